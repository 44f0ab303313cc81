# -*- coding: utf-8 -*-
from flask import Blueprint, current_app, jsonify, request

from core.errors import ChunkValidationError, IndexUnavailableError, RetrievalError
from services.retrieval.filters import validate_where

bp = Blueprint("retrieval", __name__)


def _manager():
    # create_app 负责把 CollectionManager 放进 app.extensions
    return current_app.extensions["retrieval"]


def _collection(p: dict) -> str:
    return p.get("collection") or current_app.config.get("DEFAULT_COLLECTION", "default")


def _number(value) -> float | None:
    # bool 是 int 的子类，不接受
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _options(p: dict) -> tuple:
    """校验检索参数，返回 (options, 错误信息)"""
    options = {}
    if p.get("timeout") is not None:
        timeout = _number(p["timeout"])
        if timeout is None or timeout <= 0:
            return None, "timeout 必须是正数（秒）"
        options["timeout"] = timeout
    if p.get("min_score") is not None:
        min_score = _number(p["min_score"])
        if min_score is None:
            return None, "min_score 必须是数字"
        options["min_score"] = min_score
    if "dedupe_sources" in p:
        if not isinstance(p["dedupe_sources"], bool):
            return None, "dedupe_sources 必须是布尔值"
        options["dedupe_sources"] = p["dedupe_sources"]
    if p.get("where") is not None:
        try:
            validate_where(p["where"])
        except ValueError as e:
            return None, f"where 格式错误: {e}"
        options["where"] = p["where"]
    return options, None


@bp.post("/search")
def search():
    p = request.get_json(silent=True) or {}
    query = (p.get("query") or "").strip()
    if not query:
        return jsonify({"ok": False, "error": "query 不能为空"}), 400
    top_k = p.get("top_k")
    if top_k is not None:
        try:
            top_k = int(top_k)
        except (TypeError, ValueError):
            return jsonify({"ok": False, "error": "top_k 必须是整数"}), 400
        if top_k < 1:
            return jsonify({"ok": False, "error": "top_k 必须大于 0"}), 400

    options, error = _options(p)
    if error:
        return jsonify({"ok": False, "error": error}), 400
    try:
        result = _manager().retrieve(_collection(p), query, top_k, options)
    except IndexUnavailableError as e:
        return jsonify({"ok": False, "error": str(e)}), 503
    except RetrievalError as e:
        current_app.logger.error("search failed: %s", e)
        return jsonify({"ok": False, "error": str(e)}), 500
    return jsonify({"ok": True, "result": result.to_dict()})


@bp.post("/index")
def build_index():
    data = request.get_json(silent=True) or {}
    chunks = data.get("chunks")
    if not isinstance(chunks, list) or not chunks:
        return jsonify({"ok": False, "error": "chunks 必须是非空列表"}), 400
    try:
        snapshot = _manager().build(_collection(data), chunks, persist=bool(data.get("persist", True)))
    except ChunkValidationError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    except RetrievalError as e:
        current_app.logger.error("index build failed: %s", e)
        return jsonify({"ok": False, "error": str(e)}), 500
    stats = snapshot.stats()
    stats["rejected"] = [
        {"id": r.chunk_id, "violations": r.violations} for r in snapshot.hygiene.rejected
    ] if snapshot.hygiene else []
    return jsonify({"ok": True, "collection": _collection(data), "stats": stats})


@bp.get("/stats")
def stats():
    name = request.args.get("collection") or current_app.config.get("DEFAULT_COLLECTION", "default")
    try:
        snapshot = _manager().snapshot(name)
    except IndexUnavailableError as e:
        return jsonify({"ok": False, "error": str(e)}), 503
    return jsonify({"ok": True, "collection": name, "stats": snapshot.stats()})


@bp.get("/expand")
def expand():
    """查询改写 / 意图识别调试接口"""
    q = (request.args.get("q") or "").strip()
    if not q:
        return jsonify({"ok": False, "error": "q 不能为空"}), 400
    m = _manager()
    return jsonify({
        "ok": True,
        "expansion": m.expander.expand(q).to_dict(),
        "analysis": m.detector.analyze(q).to_dict(),
    })
