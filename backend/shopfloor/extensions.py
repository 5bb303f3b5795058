# Overview: Flask extension instances for database and migrations.

import sqlite3

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()
migrate = Migrate()


# pysqlite defers BEGIN until the first DML statement, which breaks SAVEPOINT.
# Per-line sync and per-id print marking rely on savepoints, so SQLite
# connections emit BEGIN themselves.
@event.listens_for(Engine, "connect")
def _sqlite_disable_pysqlite_begin(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        dbapi_connection.isolation_level = None


@event.listens_for(Engine, "begin")
def _sqlite_emit_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")
