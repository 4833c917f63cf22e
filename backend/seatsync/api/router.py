"""Router that serves every endpoint with and without a trailing slash."""

from typing import Any, Callable

from fastapi import APIRouter
from fastapi.types import DecoratedCallable


class TrailingSlashRouter(APIRouter):
    """Registers each route twice: ``/path`` and ``/path/``.

    Only the form without the trailing slash is published in the OpenAPI
    schema. Billing providers and schedulers call the exact URL they were
    configured with, so neither form may answer with a redirect.

    Examples:
        @router.post("/update-subscription-quantity") - documented as
            /update-subscription-quantity, answers on both forms

        @router.get("") - answers on the router prefix and the prefix followed by /
    """

    def api_route(
        self, path: str, *, include_in_schema: bool = True, **kwargs: Any
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Register the route under both slash variants.

        Args:
            path (str): Route path, with or without a trailing slash
            include_in_schema (bool): Whether the slashless form appears in the OpenAPI schema
            **kwargs: Passed through to ``APIRouter.api_route``

        Returns:
            Callable[[DecoratedCallable], DecoratedCallable]: The registering decorator
        """
        path = path.rstrip("/")

        register = super().api_route(path, include_in_schema=include_in_schema, **kwargs)
        register_slashed = super().api_route(path + "/", include_in_schema=False, **kwargs)

        def decorator(func: DecoratedCallable) -> DecoratedCallable:
            register_slashed(func)
            return register(func)

        return decorator
