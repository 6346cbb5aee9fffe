from fastapi.middleware.cors import CORSMiddleware


def setup_cors(app, allowed_origins):
    wildcard = "*" in allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allowed_origins),
        allow_credentials=not wildcard,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
