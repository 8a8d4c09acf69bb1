"""Welcome e-mail workflow: the smallest useful durable workflow.

Run it end to end with a SQLite file:

    export LEDGERFLOW_DATABASE_URL=sqlite:///ledgerflow.db
    ledgerflow schema install
    ledgerflow workflow start welcome_flow --input '{"user_id": 123}' --app guides/welcome_flow.py
    ledgerflow worker run --app guides/welcome_flow.py
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from ledgerflow import WorkflowContext, register_step, register_workflow

logger = logging.getLogger(__name__)


class WelcomeInput(BaseModel):
    user_id: int


async def fetch_user(user_id: int) -> str:
    return f"user:{user_id}"


async def send_welcome_email(user: str) -> None:
    # A real implementation must tolerate being re-run after a crash.
    logger.info(f"Sending welcome email to {user}")


async def welcome_flow(ctx: WorkflowContext, data: WelcomeInput) -> None:
    user = await ctx.run(fetch_user, data.user_id)
    await ctx.run(send_welcome_email, user)


register_step("fetch_user", fetch_user, input_type=int, output_type=str)
register_step("send_welcome_email", send_welcome_email, input_type=str, output_type=None)
register_workflow("welcome_flow", welcome_flow, input_type=WelcomeInput, output_type=None)
