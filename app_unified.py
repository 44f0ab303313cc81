# -*- coding: utf-8 -*-
import logging

from flask import Flask, jsonify

from api.blueprints import register_blueprints
from core.config import CFG, LOG_LEVEL, PORT, RETRIEVAL
from services.retrieval import CollectionManager


def _default_embedder():
    """按配置选择向量模型；embedder = "none" 时只走词法检索"""
    kind = str(CFG.get("embedder", "sentence-transformers")).lower()
    if kind in ("", "none", "off"):
        return None
    from services.embedding import SentenceTransformerEmbedder

    return SentenceTransformerEmbedder(RETRIEVAL.embedding_model)


def create_app(manager: CollectionManager | None = None) -> Flask:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = Flask(__name__)
    app.config["DEFAULT_COLLECTION"] = CFG.get("default_collection", "default")

    # --------------------------- Retrieval ---------------------------
    # 索引在首次查询时从磁盘懒加载；测试可直接注入 manager
    app.extensions["retrieval"] = manager or CollectionManager(embedder=_default_embedder())
    register_blueprints(app)

    # --------------------------- 健康检查 ---------------------------
    @app.get("/healthz")
    def health():
        return jsonify({"ok": True})

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=PORT, debug=False)
