# -*- coding: utf-8 -*-
# 仅本机访问（localhost），适合开发调试
import logging

from app_unified import create_app
from core.config import PORT
from core.errors import IndexUnavailableError

if __name__ == "__main__":
    app = create_app()
    # 启动时预加载默认集合，索引缺失时只警告，首次查询会返回 503
    name = app.config["DEFAULT_COLLECTION"]
    try:
        app.extensions["retrieval"].load(name)
    except IndexUnavailableError as e:
        logging.getLogger(__name__).warning("collection %s not loaded: %s", name, e)
    app.run(host="127.0.0.1", port=PORT, debug=True)
