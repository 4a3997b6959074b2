from .jobs import (
    Job as Job,
    JobStatus as JobStatus,
    MissionOrderBatch as MissionOrderBatch,
    ExportJob as ExportJob,
    ExportType as ExportType,
)
from .league import (
    Location as Location,
    Team as Team,
    Stadium as Stadium,
    Official as Official,
    Match as Match,
    MatchAssignment as MatchAssignment,
)
