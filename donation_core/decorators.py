"""
Decorator-based registration of worker apps.

A worker app is the entry point the marketplace runs inside its enclave. The
decorator records it together with a description of the image it ships in,
so the local marketplace can execute it and the CLI can show what would be
deployed.

Example:
    from donation_core.decorators import worker_app, AppImage

    @worker_app(
        name="donation-recommender",
        image=AppImage(docker_image="acme/donation-recommender:1.0.0"),
    )
    def recommend(context):
        ...
        return 0
"""

from functools import wraps
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from donation_core.runtime import RunContext


class AppImage(BaseModel):
    """How a worker app is packaged for the marketplace."""

    docker_image: str
    checksum: Optional[str] = None  # sha256 of the image, set at deploy time
    tee_framework: str = "scone"
    entrypoint: str = "python -m workloads.donation_recommender"
    env_vars: Dict[str, str] = Field(default_factory=dict)

    def to_deploy_manifest(self, name: str) -> Dict[str, object]:
        """Describe the app the way it is registered on the marketplace."""
        manifest = {
            "name": name,
            "type": "DOCKER",
            "multiaddr": self.docker_image,
            "checksum": self.checksum or "",
            "mrenclave": {
                "framework": self.tee_framework.upper(),
                "entrypoint": self.entrypoint,
            },
        }
        if self.env_vars:
            manifest["env"] = dict(self.env_vars)
        return manifest


class WorkerApp:
    """A registered worker entry point."""

    def __init__(self, fn: Callable[[RunContext], int], name: str, image: Optional[AppImage] = None):
        self._fn = fn
        self.name = name
        self._image = image

    @property
    def image(self) -> Optional[AppImage]:
        return self._image

    def run(self, context: RunContext) -> int:
        """Run the app once and return its exit code."""
        return self._fn(context)


# Global registry of decorated worker apps
_app_registry: Dict[str, WorkerApp] = {}


def get_app(name: str) -> Optional[WorkerApp]:
    """Get a registered worker app by name."""
    return _app_registry.get(name)


def list_apps() -> List[str]:
    """List all registered worker app names."""
    return list(_app_registry.keys())


def worker_app(name: Optional[str] = None, image: Optional[AppImage] = None):
    """
    Decorator to register a worker app.

    Args:
        name: App name (defaults to function name)
        image: Packaging description of the app

    The decorated function takes a RunContext and returns a process exit code.
    """
    def decorator(fn: Callable[[RunContext], int]) -> Callable[[RunContext], int]:
        app_name = name or fn.__name__
        app = WorkerApp(fn, app_name, image)
        _app_registry[app_name] = app

        @wraps(fn)
        def wrapper(*args, **kwargs):
            return fn(*args, **kwargs)

        wrapper._worker_app = app
        return wrapper

    return decorator
