"""Regenerate on file changes, cancelling a pass that new changes have made stale."""
from __future__ import annotations

import sys
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, DefaultFilter, watch

from .assets import IGNORED_DIR_NAMES, TextSnapshot, is_manifest, is_scene
from .cache import CancellationToken
from .config import Settings
from .diagnostics import GenerationCancelled, GeneratorError
from .emitter import write_fragments
from .pipeline import GenerationResult, GeneratorPipeline
from .reporting import LOG_TAG, print_diagnostics, print_write_summary
from .symbols import load_symbol_snapshot


class ProjectFilter(DefaultFilter):
    """Only the manifest, scene assets and the symbol snapshot trigger a pass."""

    def __init__(self, *, manifest_name: str, scene_extension: str, symbols_path: Path) -> None:
        super().__init__()
        self.manifest_name = manifest_name
        self.scene_extension = scene_extension
        self.symbols_path = symbols_path.as_posix()

    def __call__(self, change: Change, path: str) -> bool:
        p = path.replace("\\", "/")
        if p == self.symbols_path:
            return True
        if not super().__call__(change, path):
            return False
        if any(f"/{name}/" in p for name in IGNORED_DIR_NAMES):
            return False
        return is_manifest(p, self.manifest_name) or is_scene(p, self.scene_extension)


class WatchSession:
    """
    Owns one pipeline and runs its passes on a single worker thread.

    When changes arrive while a pass is running, the pass's token is
    cancelled, the worker is awaited until the pass has unwound, and only
    then are the new inputs applied and a fresh pass submitted.
    """

    def __init__(self, settings: Settings, *, output_dir: Path | None = None) -> None:
        self.settings = settings
        self.project_root = settings.resolved_project_root
        self.symbols_path = settings.resolved_symbols_path
        self.output_dir = output_dir or settings.resolved_output_dir
        self.pipeline = GeneratorPipeline.from_settings(settings)
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="godot-helper-pass")
        self.generation = 0
        self._token: CancellationToken | None = None
        self._future: Future[Optional[GenerationResult]] | None = None

    def start(self) -> None:
        self.pipeline.load_project(self.symbols_path)
        self.submit()

    def submit(self) -> None:
        self.generation += 1
        self._token = CancellationToken(self.generation)
        self._future = self.executor.submit(self._run_pass, self._token)

    def wait(self) -> Optional[GenerationResult]:
        if self._future is None:
            return None
        return self._future.result()

    def cancel_running_pass(self) -> None:
        if self._future is None or self._future.done():
            return
        if self._token is not None:
            self._token.cancel()
        self._future.result()

    def _run_pass(self, token: CancellationToken) -> Optional[GenerationResult]:
        try:
            result = self.pipeline.run(token)
        except GenerationCancelled:
            print(f"{LOG_TAG} generation {token.generation} cancelled", flush=True)
            return None
        except GeneratorError as exc:
            print(f"{LOG_TAG} generation {token.generation} failed: {exc}", file=sys.stderr, flush=True)
            return None
        if token.cancelled:
            return None

        print_diagnostics(result.diagnostics)
        try:
            written, removed = write_fragments(result.fragments, self.output_dir)
        except OSError as exc:
            print(f"{LOG_TAG} generation {token.generation} failed: {exc}", file=sys.stderr, flush=True)
            return None
        print_write_summary(len(result.fragments), written, removed)
        return result

    def apply_changes(self, changes: Iterable[tuple[Change, str]]) -> None:
        """Cancel the running pass, feed changed files into the pipeline and resubmit."""
        self.cancel_running_pass()

        changed_snapshots: list[TextSnapshot] = []
        removed_paths: list[str] = []
        reload_symbols = False
        for change, raw_path in changes:
            path = Path(raw_path)
            if path.as_posix() == self.symbols_path.as_posix():
                reload_symbols = True
            elif change == Change.deleted or not path.is_file():
                removed_paths.append(path.as_posix())
            else:
                changed_snapshots.append(TextSnapshot.read(path, project_root=self.project_root))

        self.pipeline.update_assets(changed_snapshots, removed_paths)
        if reload_symbols:
            try:
                self.pipeline.update_symbols(load_symbol_snapshot(self.symbols_path))
            except GeneratorError as exc:
                print(f"{LOG_TAG} keeping previous symbols: {exc}", file=sys.stderr, flush=True)
        self.submit()

    def close(self) -> None:
        self.cancel_running_pass()
        self.executor.shutdown(wait=True)


def watch_project(settings: Settings, *, output_dir: Path | None = None) -> int:
    """Generate once, then keep regenerating until interrupted."""
    session = WatchSession(settings, output_dir=output_dir)
    watch_paths = [session.project_root]
    if not session.symbols_path.is_relative_to(session.project_root):
        watch_paths.append(session.symbols_path.parent)

    print(f"{LOG_TAG} project_root={session.project_root}", flush=True)
    print(f"{LOG_TAG} symbols={session.symbols_path}", flush=True)
    print(f"{LOG_TAG} output_dir={session.output_dir}", flush=True)
    session.start()

    watch_filter = ProjectFilter(
        manifest_name=settings.manifest_name,
        scene_extension=settings.scene_extension,
        symbols_path=session.symbols_path,
    )
    print(f"{LOG_TAG} Watching:", flush=True)
    for watch_path in watch_paths:
        print("  -", watch_path, flush=True)

    try:
        for changes in watch(*map(str, watch_paths), watch_filter=watch_filter, debounce=settings.watch_debounce_ms):
            changed = sorted({p.replace("\\", "/") for (_c, p) in changes})
            print(f"\n{LOG_TAG} Change detected:", flush=True)
            for p in changed:
                print("  -", p, flush=True)
            session.apply_changes(changes)
    except KeyboardInterrupt:
        print(f"\n{LOG_TAG} stopped", flush=True)
    finally:
        session.close()
    return 0
