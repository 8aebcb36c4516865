from fastapi import Request

from milhouse.broadcast import LogBroadcaster
from milhouse.config import Config
from milhouse.logging import get_logger
from milhouse.sessions.store import SessionRegistry
from milhouse.supervisor import RunSupervisor

_logger = get_logger(__name__)


class Runtime:
    """Everything one server instance owns: registry, broadcaster, supervisor."""

    def __init__(self, config: Config):
        self.config = config
        self.registry = SessionRegistry(config.sessions_path)
        self.broadcaster = LogBroadcaster()
        self.supervisor = RunSupervisor(
            registry=self.registry,
            broadcaster=self.broadcaster,
            state_dir=config.state_dir,
            default_workdir=config.default_workdir,
            engine_command=config.engine_command,
        )

    def connect(self) -> None:
        self.config.state_dir.mkdir(parents=True, exist_ok=True)
        _logger.info(
            "Runtime ready",
            state_dir=str(self.config.state_dir),
            default_workdir=str(self.config.default_workdir),
        )

    async def close(self) -> None:
        await self.supervisor.shutdown()
        self.broadcaster.close()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime
