"""Composition root / DI container.

The CLI (or any other front end) should not build backends and engines by
hand. This container lives in the application layer and wires up concrete
implementations lazily.
"""

from __future__ import annotations

from pathlib import Path

from asyncrepo.application.engine import RepoEngine
from asyncrepo.application.ports.backend import Backend, RepoPath
from asyncrepo.application.settings import Settings, load_settings


class Container:
    """Resolves application services. Single place to swap implementations if needed."""

    def __init__(
        self,
        repo_path: RepoPath,
        *,
        config_path: Path | None = None,
        settings: Settings | None = None,
        backend: Backend | None = None,
    ) -> None:
        self._repo_path = repo_path
        self._config_path = config_path
        self._settings = settings
        self._backend = backend
        self._engine: RepoEngine | None = None

    @property
    def repo_path(self) -> RepoPath:
        return self._repo_path

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            # An explicitly given config file must exist and parse.
            self._settings = load_settings(self._config_path, strict=self._config_path is not None)
        return self._settings

    @property
    def backend(self) -> Backend:
        if self._backend is None:
            from asyncrepo.services.git_backend import GitBackend

            self._backend = GitBackend(self._repo_path)
        return self._backend

    @property
    def engine(self) -> RepoEngine:
        if self._engine is None:
            self._engine = RepoEngine(self.backend, settings=self.settings.engine)
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.shutdown()
            self._engine = None
