from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import create_task, create_user


async def _categories(client: AsyncClient, headers: dict[str, str]) -> dict[str, dict]:
  res = await client.get("/categories", headers=headers)
  assert res.status_code == 200, res.text
  return {c["category_id"]: c for c in res.json()}


@pytest.mark.anyio
async def test_starter_categories_seeded_on_first_use(client: AsyncClient) -> None:
  _, headers = await create_user()
  cats = await _categories(client, headers)
  assert set(cats) == {"other", "work", "personal", "shopping"}
  assert cats["other"]["is_default"] is True
  assert cats["work"]["is_default"] is False

  # Idempotent.
  assert set(await _categories(client, headers)) == set(cats)


@pytest.mark.anyio
async def test_create_and_update_category(client: AsyncClient) -> None:
  _, headers = await create_user()
  res = await client.post("/categories", json={"name": "Gym", "color": "#00ff00"}, headers=headers)
  assert res.status_code == 201, res.text
  gym = res.json()
  assert gym["color"] == "#00FF00"
  assert gym["is_default"] is False
  assert gym["category_id"].startswith("cat_")

  res = await client.put(f"/categories/{gym['category_id']}", json={"name": "Fitness"}, headers=headers)
  assert res.status_code == 200, res.text
  assert res.json()["name"] == "Fitness"
  assert res.json()["color"] == "#00FF00"


@pytest.mark.anyio
async def test_category_validation(client: AsyncClient) -> None:
  _, headers = await create_user()
  dup = await client.post("/categories", json={"name": "work", "color": "#123456"}, headers=headers)
  assert dup.status_code == 400

  long_name = await client.post("/categories", json={"name": "x" * 16, "color": "#123456"}, headers=headers)
  assert long_name.status_code == 422

  bad_color = await client.post("/categories", json={"name": "Books", "color": "blue"}, headers=headers)
  assert bad_color.status_code == 422

  missing = await client.put("/categories/cat_missing", json={"name": "X"}, headers=headers)
  assert missing.status_code == 404


@pytest.mark.anyio
async def test_default_category_is_reserved(client: AsyncClient) -> None:
  _, headers = await create_user()
  await _categories(client, headers)

  res = await client.put("/categories/other", json={"name": "Misc"}, headers=headers)
  assert res.status_code == 403
  res = await client.delete("/categories/other", headers=headers)
  assert res.status_code == 403


@pytest.mark.anyio
async def test_delete_category_moves_tasks_to_default(client: AsyncClient) -> None:
  _, headers = await create_user()
  t = await create_task(client, headers, "Buy milk", category_id="shopping")

  res = await client.delete("/categories/shopping", headers=headers)
  assert res.status_code == 200, res.text
  assert res.json() == {"ok": True, "movedTasks": 1}

  moved = (await client.get(f"/tasks/{t['task_id']}", headers=headers)).json()
  assert moved["category_id"] == "other"
  assert moved["category_name"] == "Other"

  # A deleted starter category stays deleted until defaults are restored.
  assert "shopping" not in await _categories(client, headers)
  res = await client.post("/categories/default", headers=headers)
  assert res.status_code == 200, res.text
  assert "shopping" in {c["category_id"] for c in res.json()}


@pytest.mark.anyio
async def test_categories_are_per_user(client: AsyncClient) -> None:
  _, alice = await create_user("Alice", chat_id="1")
  _, bob = await create_user("Bob", chat_id="2")
  gym = (await client.post("/categories", json={"name": "Gym", "color": "#00FF00"}, headers=alice)).json()

  assert gym["category_id"] not in await _categories(client, bob)
  res = await client.post("/tasks", json={"title": "T", "category_id": gym["category_id"]}, headers=bob)
  assert res.status_code == 400
  assert (await client.delete(f"/categories/{gym['category_id']}", headers=bob)).status_code == 404
