import asyncio
import io
import zipfile

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from docshelf.database import get_db, init_db
from docshelf.dependencies import Services, get_services
from docshelf.main import app
from docshelf.services.delivery_cache import DeliveryCache
from docshelf.services.document_service import DocumentIngestor, SqlDocumentLocator

DOCX_CONTENT_TYPES = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">
<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>
<Default Extension="xml" ContentType="application/xml"/>
<Override PartName="/word/document.xml" ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>
</Types>"""

DOCX_RELS = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
<Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" Target="word/document.xml"/>
</Relationships>"""

DOCX_BODY = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">
<w:body>{paragraphs}</w:body>
</w:document>"""

DOCX_FOOTNOTES = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<w:footnotes xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">{notes}</w:footnotes>"""


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class InMemoryObjectStore:
    """Object store double: keeps blobs in a dict and signs URLs for StorageServer."""

    BASE_URL = "https://storage.test"

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.signed: list[str] = []
        self.deleted: list[str] = []

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = (data, content_type)

    async def signed_get_url(self, key: str, ttl_seconds: int | None = None) -> str:
        self.signed.append(key)
        return f"{self.BASE_URL}/{key}?X-Amz-Expires={ttl_seconds or 3600}&X-Amz-Signature=test"

    async def delete(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)


class StorageServer:
    """httpx transport handler answering signed GETs from an InMemoryObjectStore."""

    def __init__(self, store: InMemoryObjectStore):
        self.store = store
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = request.url.path.lstrip("/")
        if key not in self.store.objects:
            return httpx.Response(404, content=b"<Error><Code>NoSuchKey</Code></Error>")
        return httpx.Response(200, content=self.store.objects[key][0])


@pytest.fixture
def make_docx():
    def build(*paragraphs: str, body_xml: str = "", footnotes_xml: str | None = None) -> bytes:
        runs = "".join(f"<w:p><w:r><w:t>{p}</w:t></w:r></w:p>" for p in paragraphs)
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("[Content_Types].xml", DOCX_CONTENT_TYPES)
            zf.writestr("_rels/.rels", DOCX_RELS)
            zf.writestr("word/document.xml", DOCX_BODY.format(paragraphs=runs + body_xml))
            if footnotes_xml is not None:
                zf.writestr("word/footnotes.xml", DOCX_FOOTNOTES.format(notes=footnotes_xml))
        return buf.getvalue()

    return build


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def storage_server(object_store):
    return StorageServer(object_store)


@pytest.fixture
def http_client(storage_server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(storage_server))
    yield client
    asyncio.run(client.aclose())


@pytest.fixture
def test_db(tmp_path):
    db_path = tmp_path / "docshelf.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    init_db(db_path)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestSession
    app.dependency_overrides.clear()


@pytest.fixture
def services(object_store, http_client, test_db):
    locator = SqlDocumentLocator(test_db)
    cache = DeliveryCache(object_store, locator, http_client)
    return Services(
        object_store=object_store,
        delivery_cache=cache,
        ingestor=DocumentIngestor(object_store, key_index=locator),
        http_client=http_client,
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    c = TestClient(app)
    yield c
    app.dependency_overrides.pop(get_services, None)
