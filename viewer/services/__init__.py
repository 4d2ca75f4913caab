"""Services package for the protocol viewer's session logic."""

from .gap_detector import GapDetectionResult, GapDetector
from .recovery import RecoveryFetcher, RecoveryResult
from .demo_session import ConnectionStatus, DemoSession
from .interactive_demo import DemoPhase, InteractiveDemo, InteractiveDemoState

__all__ = [
    "GapDetectionResult",
    "GapDetector",
    "RecoveryFetcher",
    "RecoveryResult",
    "ConnectionStatus",
    "DemoSession",
    "DemoPhase",
    "InteractiveDemo",
    "InteractiveDemoState",
]
