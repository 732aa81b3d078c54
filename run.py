import sys
import os
import uvicorn

if sys.platform == "win32":
    import asyncio
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

if __name__ == "__main__":
    host = os.environ.get("CHATROOM_HOST", "localhost")
    port = int(os.environ.get("CHATROOM_PORT", "3000"))
    uvicorn.run(
        "chatroom.server:app",
        host=host,
        port=port,
        reload=True,
        reload_dirs=["chatroom", "public"] if os.path.isdir("public") else ["chatroom"],
    )
