from fastapi import Request

from livepoll.services.backends.base import BusBackedBackend, RealtimeBackend


def get_backend(request: Request) -> RealtimeBackend:
    return request.app.state.backend


def get_bus_backend(backend: RealtimeBackend) -> BusBackedBackend:
    if not isinstance(backend, BusBackedBackend):
        raise RuntimeError("realtime fan-out needs a backend living in this process")
    return backend
