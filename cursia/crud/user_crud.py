from sqlalchemy.orm import Session
from cursia.models.user.user_model import User
from cursia.schemas.user_schema import UserCreate
from cursia.core.security import get_password_hash
from typing import Optional


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.lower()).first()


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def create_user(db: Session, user: UserCreate) -> User:
    """
    Crea un usuario nuevo con la contraseña hasheada.

    Args:
        db: La sesión de base de datos.
        user: Los datos validados del registro.

    Returns:
        El objeto User recién creado.
    """
    db_user = User(
        email=user.email.lower(),
        username=user.username,
        full_name=user.name,
        level=user.level,
        interests=list(user.interests),
        hashed_password=get_password_hash(user.password),
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user
