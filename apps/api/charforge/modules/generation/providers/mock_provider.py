from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Dict, List, Optional


class MockProvider:
    """
    Offline provider for dev and demos:
    - walks the response schema and fills every node
    - output is deterministic for a given (prompt, schema)
    """
    name = "mock"

    def __init__(self, list_length: int = 3) -> None:
        self.list_length = list_length
        self.calls: List[Dict[str, Any]] = []

    async def generate_json(
        self,
        *,
        system_instruction: Optional[str],
        prompt: str,
        response_schema: Dict[str, Any],
    ) -> str:
        self.calls.append({"system_instruction": system_instruction, "prompt": prompt})
        await asyncio.sleep(0)
        concept = _concept(prompt)
        return json.dumps(self._fill(response_schema, "root", concept), ensure_ascii=False)

    def _fill(self, node: Dict[str, Any], key: str, concept: str) -> Any:
        kind = str(node.get("type", "STRING")).upper()
        if kind == "OBJECT":
            return {k: self._fill(v, k, concept) for k, v in (node.get("properties") or {}).items()}
        if kind == "ARRAY":
            items = node.get("items") or {"type": "STRING"}
            return [self._fill(items, f"{key} {i + 1}", concept) for i in range(self.list_length)]
        if kind == "INTEGER":
            return 10 + (sum(map(ord, key)) % 6)
        if key == "name":
            return f"Mock {concept.title()}"
        if key.startswith("level"):
            # harm track starts empty
            return ""
        return f"{key} ({concept})"


def _concept(prompt: str) -> str:
    # prompts quote the user's concept
    quoted = re.search(r'"([^"]+)"', prompt)
    words = re.findall(r"[A-Za-z]+", quoted.group(1) if quoted else prompt)
    return " ".join(words[:3]).lower() or "hero"
