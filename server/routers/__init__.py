"""HTTP routers for the Pyatikantrop server."""
