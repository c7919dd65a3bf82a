import asyncio


def run(coro):
    return asyncio.run(coro)


def upload(client, user_id, *parts):
    """POST parts given as (filename, bytes, content_type)."""
    return client.post(
        "/api/files/upload",
        data={"user_id": str(user_id)},
        files=[("files", part) for part in parts],
    )
