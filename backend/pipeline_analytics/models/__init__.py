from pipeline_analytics.models.pipeline_run import PipelineRun, QualityCheck  # noqa: F401
from pipeline_analytics.models.optimization import PipelineOptimization  # noqa: F401
from pipeline_analytics.models.audit import LifecycleEvent  # noqa: F401
