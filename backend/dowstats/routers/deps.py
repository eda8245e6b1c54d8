from fastapi import Request

from dowstats.plugin import PluginContext


def get_context(request: Request) -> PluginContext:
    return request.app.state.context
