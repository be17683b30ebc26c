# node_trust/status.py
"""
Status HTTP endpoint

Read-only view of the agent's trust and exclusion state.
"""

import logging
import threading
from typing import List, Optional, TYPE_CHECKING

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

if TYPE_CHECKING:
    from .agent import NodeTrustAgent

logger = logging.getLogger('node-trust.status')


class HealthResponse(BaseModel):
    status: str
    service: str = "node-trust-agent"


class StatusResponse(BaseModel):
    node: str
    auth_mode: str
    running: bool
    trust_state: Optional[str] = None
    peers: List[str] = []
    exclusions: List[str] = []


def create_status_app(agent: "NodeTrustAgent") -> FastAPI:
    app = FastAPI(title="Node Trust Agent")

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        return HealthResponse(status="ok" if agent.running else "starting")

    @app.get("/status", response_model=StatusResponse)
    def status():
        trust = agent.trust_sync
        cache = agent.certificate_cache
        exclusions = agent.exclusion_sync.current if agent.exclusion_sync else None
        return StatusResponse(
            node=agent.node_name,
            auth_mode=agent.auth_mode.value,
            running=agent.running,
            trust_state=trust.state.value if trust else None,
            peers=sorted(cache.snapshot()) if cache is not None else [],
            exclusions=list(exclusions) if exclusions else [],
        )

    return app


class StatusServer:
    """
    Runs uvicorn in a daemon thread

    Off the main thread uvicorn leaves signal handling to the agent.
    """

    def __init__(self, agent: "NodeTrustAgent", port: int, host: str = "0.0.0.0"):
        self.host = host
        self.port = port
        config = uvicorn.Config(create_status_app(agent), host=host, port=port, log_level="warning")
        self.server = uvicorn.Server(config)
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(target=self.server.run, name="status-server", daemon=True)
        self._thread.start()
        logger.info(f"Status endpoint listening on {self.host}:{self.port}")

    def stop(self, timeout: float = 5.0):
        self.server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
