from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Clase base de todos los modelos SQLAlchemy.
    Sirve para crear el esquema al arrancar la aplicación.
    """
