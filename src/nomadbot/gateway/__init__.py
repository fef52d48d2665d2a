from nomadbot.gateway.commands import CommandSurface
from nomadbot.gateway.status_server import StatusServer, create_status_app

__all__ = ["CommandSurface", "StatusServer", "create_status_app"]
