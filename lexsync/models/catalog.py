from pydantic import BaseModel, Field

class CatalogFilters(BaseModel):
    query: str | None = None
    court: str | None = None                # source / jurisdiction id
    date_filed_after: str | None = None     # YYYY-MM-DD
    date_filed_before: str | None = None
    page_size: int | None = None
    max_results: int = 100

class CatalogArtifact(BaseModel):
    download_url: str
    sha1: str | None = None
    artifact_type: str | None = None
    opinion_id: int | None = None

class CatalogItem(BaseModel):
    cluster_id: int
    case_name: str
    court: str = ""
    court_id: str = ""
    date_filed: str | None = None
    docket_number: str | None = None
    docket_id: int | None = None
    citations: list[str] = Field(default_factory=list)
    cite_count: int = 0
    status: str | None = None
    source: str | None = None
    artifacts: list[CatalogArtifact] = Field(default_factory=list)

    @property
    def reference(self) -> str:
        return f"cluster:{self.cluster_id}"

    @property
    def primary_artifact(self) -> CatalogArtifact | None:
        return self.artifacts[0] if self.artifacts else None

class Court(BaseModel):
    id: str
    short_name: str = ""
    full_name: str = ""
    jurisdiction: str = ""
