"""Router that serves every path with and without a trailing slash."""

from typing import Any, Callable

from fastapi import APIRouter
from fastapi.types import DecoratedCallable


class TrailingSlashRouter(APIRouter):
    """Registers each endpoint twice, once without and once with a trailing slash.

    Stripe posts to the URL exactly as configured in the dashboard, and a redirect would turn
    the POST into a GET. Both spellings are served directly; only the one without the slash
    appears in the OpenAPI schema.

    Examples:
        @router.post("/stripe") - documented as /webhooks/stripe, responds to both
            /webhooks/stripe and /webhooks/stripe/

        @router.get("") - documented as /health, responds to both /health and /health/
    """

    def api_route(
        self, path: str, *, include_in_schema: bool = True, **kwargs: Any
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Register the slash and non-slash versions of a route.

        Args:
            path (str): The path for the endpoint
            include_in_schema (bool): Whether to include the route in the OpenAPI schema
            **kwargs: Additional arguments to pass to the parent api_route method

        Returns:
            Callable[[DecoratedCallable], DecoratedCallable]: Decorator registering both paths
        """
        path = path.rstrip("/")

        add_path = super().api_route(path, include_in_schema=include_in_schema, **kwargs)
        add_alternate_path = super().api_route(f"{path}/", include_in_schema=False, **kwargs)

        def decorator(func: DecoratedCallable) -> DecoratedCallable:
            add_alternate_path(func)
            return add_path(func)

        return decorator
