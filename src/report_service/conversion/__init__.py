"""
Domain layer for HTML report conversion.
Provides the job store, timeout supervisor, layout heuristics and the render
strategy chain, abstracting storage and rendering backends so front-ends
(HTTP or others) can use the same core logic.
"""

from .chain import RenderChain
from .errors import ChainExhausted, StrategyFailure, TimeoutExceeded, ValidationWarning
from .interfaces import BrowserDriver, BrowserLocator, StorageGateway
from .layout import LayoutDirective, compute_directives
from .models import ConversionJob, JobStatus, RenderConfig
from .preprocess import prepare
from .service import ConversionService, build_service
from .settings import Settings
from .store import JobStore
from .supervisor import JobSupervisor
