def register_blueprints(app):
    from .search import bp as retrieval_bp

    app.register_blueprint(retrieval_bp, url_prefix="/api/retrieval")
