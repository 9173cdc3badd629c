"""@mentions and #references in chat messages."""

import re

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from listpilot.core.context import TurnContext
from listpilot.models.account import User
from listpilot.services.resolver import ReferenceResolver

MENTION_PATTERN = re.compile(r"(?<![\w@])@([\w.\-]+)")
REFERENCE_PATTERN = re.compile(r"(?<![\w&])#([\w\-]+)")


def _reference_text(token: str) -> str:
    # "#q2-roadshow" refers to a list titled "Q2 Roadshow"
    return token.replace("-", " ").replace("_", " ")


class MentionParser:
    def __init__(self, engine: Engine, resolver: ReferenceResolver):
        self.engine = engine
        self.resolver = resolver

    def parse(self, ctx: TurnContext, text: str) -> dict:
        """Returns {"mentions": [...], "references": [...]}; unmatched tokens are dropped."""
        return {
            "mentions": self._mentions(ctx, text),
            "references": self._references(ctx, text),
        }

    def _mentions(self, ctx: TurnContext, text: str) -> list[dict]:
        found: list[dict] = []
        seen: set[int] = set()
        tokens = MENTION_PATTERN.findall(text or "")
        if not tokens:
            return found

        with Session(self.engine) as session:
            for token in tokens:
                lowered = token.lower().rstrip(".")
                user = session.exec(
                    select(User)
                    .where(
                        User.organization_id == ctx.organization_id,
                        (func.lower(User.email).like(f"{lowered}@%")) | (func.lower(User.name) == lowered),
                    )
                    .order_by(User.id)
                ).first()
                if user and user.id not in seen:
                    seen.add(user.id)
                    found.append({"type": "user", "id": user.id, "name": user.name, "token": f"@{token}"})
        return found

    def _references(self, ctx: TurnContext, text: str) -> list[dict]:
        found: list[dict] = []
        seen: set[str] = set()
        for token in REFERENCE_PATTERN.findall(text or ""):
            match = self.resolver.resolve_list(ctx, token) or self.resolver.resolve_list(ctx, _reference_text(token))
            if match is None:
                match = self.resolver.resolve_item(ctx, _reference_text(token))
            if match and match.id not in seen:
                seen.add(match.id)
                found.append({"type": match.kind, "id": match.id, "title": match.title, "token": f"#{token}"})
        return found
