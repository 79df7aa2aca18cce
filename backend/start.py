import uvicorn
from config import get_settings
from init_db import init_db

if __name__ == "__main__":
    # 初始化数据库
    init_db()

    # 启动服务器
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
    )
