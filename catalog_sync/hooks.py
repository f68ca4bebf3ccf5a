"""
Post-processing hooks run after a successful transform.

Hooks are external collaborators (thumbnail generation, cache warmers,
notifications). A failing hook never fails the run: the error is recorded
in SyncRun.hook_errors and the remaining hooks still run.

Hooks share the run's session. Work a hook leaves pending is committed
when it returns and rolled back when it raises, so one hook's database
error cannot leave the session unusable for the hooks after it or for
finalizing the run.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from models.sync_run import SyncRun
import logging

logger = logging.getLogger(__name__)


@dataclass
class PostSyncContext:
    run: SyncRun
    session: AsyncSession
    written_sku_ids: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)


PostSyncHook = Callable[[PostSyncContext], Awaitable[None]]


class HookRegistry:
    """Ordered, named post-sync hooks"""

    def __init__(self):
        self._hooks: Dict[str, PostSyncHook] = {}

    def register(self, name: str, hook: Optional[PostSyncHook] = None):
        """
        Register a hook; usable as a decorator.

            @registry.register("thumbnails")
            async def build_thumbnails(ctx): ...
        """
        if hook is None:
            def decorator(fn: PostSyncHook) -> PostSyncHook:
                self._hooks[name] = fn
                return fn
            return decorator

        self._hooks[name] = hook
        return hook

    def unregister(self, name: str):
        self._hooks.pop(name, None)

    @property
    def names(self) -> List[str]:
        return list(self._hooks)

    def __len__(self) -> int:
        return len(self._hooks)

    async def run_all(self, ctx: PostSyncContext) -> List[Dict[str, Any]]:
        """
        Run every hook in registration order.

        Returns:
            One error entry per failed hook
        """
        errors = []

        for name, hook in self._hooks.items():
            try:
                await hook(ctx)
                await ctx.session.commit()
                logger.info(f"Post-sync hook '{name}' finished")
            except Exception as e:
                error = {"hook": name, "error_type": type(e).__name__, "error_message": str(e)}
                errors.append(error)
                logger.error(
                    f"Post-sync hook '{name}' failed: {e}",
                    extra={"error_context": error}
                )
                await ctx.session.rollback()
                await ctx.session.refresh(ctx.run)

        return errors


hook_registry = HookRegistry()
