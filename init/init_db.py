# init/init_db.py
import argparse
import os
import sys

# 把项目根目录加入 Python 搜索路径 (直接 python init/init_db.py 运行时需要)
current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(current_dir)
if project_root not in sys.path:
    sys.path.append(project_root)

# shared.config 导入时会加载 .env
from shared.database import Base, engine
from shared import models  # noqa: F401  必须导入 models，否则 create_all 不知道要创建什么表
from shared.utils.logger import debug_log, setup_logging


def init_models(drop=False, bind=None):
    bind = bind if bind is not None else engine
    debug_log(f"🔌 正在连接数据库: {bind.url.render_as_string(hide_password=True)}", "INFO")

    if drop:
        # ⚠️ 警告：这会清空所有数据！仅在开发环境使用
        debug_log("🗑️  正在删除旧表 (Drop All)...", "WARNING")
        Base.metadata.drop_all(bind=bind)

    debug_log("🛠️  正在创建表 (Create All)...", "INFO")
    Base.metadata.create_all(bind=bind)
    debug_log("✅ 数据库表结构同步完成！", "SUCCESS")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create requester tables")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args(argv)

    setup_logging()
    init_models(drop=args.drop)


if __name__ == "__main__":
    main()
