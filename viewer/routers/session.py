"""
Viewer API for the presentation layer.

Provides endpoints for:
- Reading the live session's reconstructed state and gap diagnostics
- Connecting and resetting the live session
- Stepping through the interactive demo (create, shuffle, deal, reset)
"""

import logging

from fastapi import APIRouter, HTTPException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["session"])

# Service instances (set during app startup)
_session = None
_interactive_demo = None
_interactive_session = None


def set_session(session) -> None:
    """Set the live DemoSession instance."""
    global _session
    _session = session


def set_interactive_demo(demo, viewer_session) -> None:
    """Set the InteractiveDemo and the transport-less session its streams feed."""
    global _interactive_demo, _interactive_session
    _interactive_demo = demo
    _interactive_session = viewer_session


def _require_session():
    if _session is None:
        raise HTTPException(status_code=503, detail="Live session not initialized")
    return _session


def _require_interactive():
    if _interactive_demo is None or _interactive_session is None:
        raise HTTPException(status_code=503, detail="Interactive demo not initialized")
    return _interactive_demo, _interactive_session


def _interactive_payload() -> dict:
    demo, viewer = _require_interactive()
    return {
        "demo": demo.state.to_dict(),
        "state": viewer.state.to_dict(),
    }


# -------------------------------------------------------------------------
# Live Session
# -------------------------------------------------------------------------

@router.get("/session")
async def get_session_state():
    """Current reconstructed state of the live session."""
    session = _require_session()
    return {
        "connection_status": session.status.value,
        "state": session.state.to_dict(),
    }


@router.get("/session/debug")
async def get_session_debug():
    """Gap detector and connection diagnostics."""
    return _require_session().debug_info()


@router.post("/session/connect")
async def connect_session():
    """Connect the live feed (no-op if already connected)."""
    session = _require_session()
    try:
        session.start()
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"connection_status": session.status.value}


@router.post("/session/reset")
async def reset_session():
    """Disconnect and clear the live session."""
    session = _require_session()
    session.reset()
    logger.info("Live session reset via API")
    return {"connection_status": session.status.value}


# -------------------------------------------------------------------------
# Interactive Demo
# -------------------------------------------------------------------------

@router.get("/demo")
async def get_demo():
    """Interactive demo phase plus the state reconstructed from its streams."""
    return _interactive_payload()


@router.post("/demo")
async def create_demo():
    """Create a new demo session on the ledger."""
    demo, viewer = _require_interactive()
    demo.reset()
    viewer.reset()
    await demo.start_demo()
    if demo.state.error:
        raise HTTPException(status_code=502, detail=demo.state.error)

    # Phase streams carry only game events; announce the hand from the session info
    info = demo.session_info
    viewer.begin_hand(info.to_hand_created(), info.viewer_public_key)
    return _interactive_payload()


@router.post("/demo/shuffle")
async def start_demo_shuffle():
    """Open the shuffle phase stream."""
    demo, viewer = _require_interactive()
    if not demo.start_shuffle(viewer.handle_stream_event):
        raise HTTPException(status_code=409, detail=demo.state.error)
    return _interactive_payload()


@router.post("/demo/deal")
async def start_demo_deal():
    """Open the deal phase stream."""
    demo, viewer = _require_interactive()
    if not demo.start_deal(viewer.handle_stream_event):
        raise HTTPException(status_code=409, detail=demo.state.error)
    return _interactive_payload()


@router.post("/demo/reset")
async def reset_demo():
    """Close the demo streams and return to idle."""
    demo, viewer = _require_interactive()
    demo.reset()
    viewer.reset()
    return _interactive_payload()
