"""SQLAlchemy engine and thread-scoped session shared by the app, the CLI and the tests."""
from sqlalchemy import BigInteger, Integer, create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

Base = declarative_base()

# BIGINT primary keys do not autoincrement on SQLite
BigIntPK = BigInteger().with_variant(Integer(), 'sqlite')

# Bound by init_db()
engine = None
db_session = None


def init_db(app):
    """Create the engine and session factory from SQLALCHEMY_DATABASE_URI."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if database_uri.startswith('sqlite'):
        # Scoped sessions hand pooled connections to other threads
        engine_options['connect_args'] = {
            'check_same_thread': False,
            'timeout': app.config.get('SQLITE_BUSY_TIMEOUT', 15),
        }
    else:
        engine_options['pool_size'] = 10
        engine_options['max_overflow'] = 20

    engine = create_engine(database_uri, **engine_options)

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Roll back on an unhandled error, then release the scoped session."""
        if exception:
            db_session.rollback()
        db_session.remove()


def get_session():
    """Session for the current thread."""
    return db_session


def get_engine():
    """Get database engine."""
    return engine
