"""Mutation handler contract.

Every handler has the shape

    async def handler(ctx: RequestContext, prev_state: ActionState | None,
                      form: Mapping[str, str]) -> ActionState | Redirect

and returns {"error": ..., **echoed} / {"success": ..., **fields} for
expected failures and results, or a Redirect. Handlers do not raise past
this boundary for anything a user can cause.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from saaskit_api.context import RequestContext

ActionState = dict[str, Any]


@dataclass(frozen=True)
class Redirect:
    url: str


ActionResult = Union[ActionState, Redirect]
ActionHandler = Callable[[RequestContext, Optional[ActionState], Mapping[str, str]], Awaitable[ActionResult]]

FormT = TypeVar("FormT", bound=BaseModel)


def error(message: str, **echoed: Any) -> ActionState:
    return {"error": message, **echoed}


def success(message: str, **fields: Any) -> ActionState:
    return {"success": message, **fields}


def form_value(form: Mapping[str, Any], key: str) -> Optional[str]:
    """Single string value from a form mapping; empty strings become None."""
    value = form.get(key)
    if value is None:
        return None
    value = str(value)
    return value if value != "" else None


def parse_form(model: Type[FormT], form: Mapping[str, Any], fields: tuple[str, ...]) -> Optional[FormT]:
    """Validate the named form fields against a pydantic model; None on failure."""
    try:
        return model.model_validate({name: form_value(form, name) for name in fields})
    except ValidationError:
        return None
