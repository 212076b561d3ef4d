"""
Application context shared by every request.

Built once in main.create_app() and stored on app.state; read-only afterwards.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request
from pymongo.database import Database

from config import Settings

if TYPE_CHECKING:
    from orders import OrderService
    from security import PasswordHasher, TokenService


@dataclass(frozen=True)
class AppContext:
    settings: Settings
    db: Database
    tokens: "TokenService"
    passwords: "PasswordHasher"
    orders: "OrderService"


def get_context(request: Request) -> AppContext:
    return request.app.state.context
