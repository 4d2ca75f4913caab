"""HTTP routers for the protocol viewer."""
