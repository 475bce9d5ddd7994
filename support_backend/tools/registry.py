"""Action registry: named, schema-validated operations the responders may call.

Every action pairs a pydantic argument model with an async executor that
receives validated arguments and an open database session. Executors return
plain JSON-friendly dicts. A missing target is a normal result
(``found: false`` / ``success: false``); only malformed arguments and storage
failures raise, as ``ActionError``.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..data.database import Database
from ..utils.logger import get_logger

logger = get_logger()

Executor = Callable[[BaseModel, AsyncSession], Awaitable[Dict[str, Any]]]


class ActionError(Exception):
    """An action could not run: bad arguments, unknown name or storage failure."""

    def __init__(self, action: str, message: str):
        super().__init__(f"Action '{action}' failed: {message}")
        self.action = action


class ActionArgs(BaseModel):
    """Base for argument models; the model sees camelCase names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


@dataclass(frozen=True)
class Action:
    name: str
    description: str
    args_model: Type[ActionArgs]
    executor: Executor

    def to_llm_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(by_alias=True),
            },
        }

    def validate(self, raw_args: Optional[Dict[str, Any]]) -> ActionArgs:
        try:
            return self.args_model.model_validate(raw_args or {})
        except ValidationError as e:
            raise ActionError(self.name, f"invalid arguments: {e.errors(include_url=False)}") from e


class ActionRegistry:
    """Name -> Action map. Populated at import time, read-only afterwards."""

    def __init__(self, actions: Iterable[Action] = ()):
        self._actions: Dict[str, Action] = {}
        for a in actions:
            self.register(a)

    def register(self, action: Action) -> Action:
        if action.name in self._actions:
            raise ValueError(f"Action '{action.name}' is already registered")
        self._actions[action.name] = action
        return action

    def action(self, name: str, args_model: Type[ActionArgs], description: str):
        """Decorator registering an async executor under ``name``."""
        def decorator(fn: Executor) -> Executor:
            self.register(Action(name=name, description=description, args_model=args_model, executor=fn))
            return fn
        return decorator

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)

    def names(self) -> List[str]:
        return list(self._actions)

    def list_actions(self) -> List[Action]:
        return list(self._actions.values())

    def __contains__(self, name: str) -> bool:
        return name in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def to_llm_schemas(self) -> List[Dict[str, Any]]:
        return [a.to_llm_schema() for a in self._actions.values()]

    async def execute(self, name: str, raw_args: Optional[Dict[str, Any]], database: Database) -> Dict[str, Any]:
        action = self._actions.get(name)
        if action is None:
            raise ActionError(name, f"unknown action; available: {sorted(self._actions)}")

        args = action.validate(raw_args)
        logger.info(f"[TOOL] Executing {name} with {args.model_dump(by_alias=True)}")
        try:
            async with database.session() as db:
                result = await action.executor(args, db)
        except SQLAlchemyError as e:
            logger.error(f"[TOOL] Storage failure in {name}: {e}")
            raise ActionError(name, f"storage failure: {e}") from e
        return result


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
