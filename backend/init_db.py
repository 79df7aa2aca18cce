from models import Base
from database import engine

def init_db():
    # 创建所有表（已存在的表不会被修改）
    Base.metadata.create_all(bind=engine)
    print("数据库初始化完成！")

if __name__ == "__main__":
    init_db()
