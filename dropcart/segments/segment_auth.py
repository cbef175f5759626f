from __future__ import annotations

import re

from flask import Blueprint, current_app, jsonify

from dropcart.extensions import db
from dropcart.models import User
from dropcart.services.access_policy import Role
from dropcart.utils.auth import require_user
from dropcart.utils.errors import BadRequestError, UnauthorizedError
from dropcart.utils.http import json_body
from dropcart.utils.jwt_utils import create_token

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


@auth_bp.post("/register")
def register():
    data = json_body()
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not EMAIL_RE.match(email):
        raise BadRequestError("A valid email is required", code="INVALID_EMAIL")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequestError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", code="WEAK_PASSWORD")
    if User.query.filter_by(email=email).first() is not None:
        raise BadRequestError("Email already in use", code="EMAIL_TAKEN")

    user = User(name=name or email.split("@")[0], email=email, role=Role.CUSTOMER)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("user_registered user_id=%s", user.id)
    return jsonify({"ok": True, "token": create_token(user.id), "user": user.to_dict()}), 201


@auth_bp.post("/login")
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    user = User.query.filter_by(email=email).first() if email else None
    if user is None or not user.check_password(password):
        raise UnauthorizedError("Invalid email or password", code="INVALID_CREDENTIALS")
    return jsonify({"ok": True, "token": create_token(user.id), "user": user.to_dict()}), 200


@auth_bp.get("/me")
def me():
    user = require_user()
    return jsonify({"ok": True, "user": user.to_dict()}), 200
