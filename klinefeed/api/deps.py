from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from klinefeed.app_factory import Services


def get_services(request: Request) -> Services:
    return request.app.state.services
