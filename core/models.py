from pydantic import BaseModel, Field
from typing import List

DEFAULT_INCLUDE_KEYWORDS = (
    "нежилое,нежилые,нежилого,нежилых,помещение,помещения,помещений,здание,"
    "жилое,жилой,жилая,жилые,квартира,земельный,участок,имущественный,комплекс,"
    "недвижимого,недвижимое,дом,строение,комната"
)
DEFAULT_EXCLUDE_KEYWORDS = (
    "автомобиль,камаз,маз,трактор,погрузчик,лом,судно,гидроцикл,транспорт,оборудование,станок"
)
DEFAULT_EXCLUDED_LOT_TYPES = (
    "управление многоквартирными домами,отбор региональных операторов,"
    "обращение с тко,управляющих организаций"
)

TORGI_RSS_URL = (
    "https://torgi.gov.ru/new/api/public/lotcards/rss"
    "?dynSubjRF=80&lotStatus=PUBLISHED,APPLICATIONS_SUBMISSION&byFirstVersion=true"
)
TORGI_CLOSED_RSS_URL = (
    "https://torgi.gov.ru/new/api/public/lotcards/rss"
    "?dynSubjRF=80&lotStatus=SUCCEED,FAILED,CANCELED,APPLICATIONS_SUBMISSION_SUSPENDED"
    "&matchPhrase=false&byFirstVersion=true"
)
TORGI_XHR_URL = "https://torgi.gov.ru/new/api/public/lotcards/"
CDTRF_BASE_URL = "https://bankrot.cdtrf.ru"
SBERAST_BASE_URL = "https://www.sberbank-ast.ru"


class Operators(BaseModel):
    """Список операторов (админов), которым разрешено управлять ботом."""
    user_ids: List[int] = Field(default_factory=list)


class RegionSignature(BaseModel):
    code: str = "91"
    name: str = "севастополь"

    @property
    def cadastral_prefix(self) -> str:
        return f"{self.code}:"


class Settings(BaseModel):
    target_chat_id: int
    admin_chat_id: int
    database_url: str = "sqlite+aiosqlite:///data/lots.db"

    include_keywords: List[str] = Field(default_factory=list)
    exclude_keywords: List[str] = Field(default_factory=list)
    excluded_lot_types: List[str] = Field(default_factory=list)
    region: RegionSignature = Field(default_factory=RegionSignature)

    rss_url: str = TORGI_RSS_URL
    xhr_url: str = TORGI_XHR_URL
    closed_rss_url: str = TORGI_CLOSED_RSS_URL
    cdtrf_base_url: str = CDTRF_BASE_URL
    sberast_base_url: str = SBERAST_BASE_URL

    operators_file: str = "data/operators.json"
    log_level: str = "INFO"
