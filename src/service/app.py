"""FastAPI host service exposing the Tristogram engine."""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query

try:
    from . import __version__
except Exception:  # pragma: no cover - fallback for partial installs
    __version__ = "0.0.0+unknown"

from .config import (
    CLUSTER_TIMEOUT_MS,
    MAX_CLUSTER_POINTS,
    MAX_HISTOGRAMS,
    MAX_IMAGE_BYTES,
    MAX_JOBS,
    WARN_CLUSTER_POINTS,
)
from .schemas import (
    AttributesResponse,
    ClusterInfo,
    ClusterRequest,
    ClusterResponse,
    FilterRequest,
    FilterResponse,
    HistogramStats,
    ImageUpload,
    JobStatus,
    SourcesResponse,
    StopRequest,
)
from src.tristogram import (
    CancellationToken,
    ClusteringLimitError,
    ClusteringParameterError,
    HistogramBuilderConfig,
    RasterError,
    Tristogram,
    TristogramConfig,
    VisualizationMode,
    decode_raster,
    raster_from_bytes,
)
from src.tristogram.types import ClusterAssignment

logger = logging.getLogger("tristogram.service")

app = FastAPI(title="Tristogram Service", version=__version__)


@dataclass
class ClusterJob:
    job_id: str
    histogram_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    status: JobStatus = JobStatus.PENDING
    result: Optional[ClusterResponse] = None
    reason: Optional[str] = None


_histograms: "OrderedDict[str, Tristogram]" = OrderedDict()
_sources: Dict[str, Optional[str]] = {}
_jobs: "OrderedDict[str, ClusterJob]" = OrderedDict()
_lock = asyncio.Lock()


def _forget_jobs(histogram_id: str) -> None:
    """Cancel and drop every job of a histogram; caller holds ``_lock``."""
    for job_id in [key for key, job in _jobs.items() if job.histogram_id == histogram_id]:
        job = _jobs.pop(job_id)
        if job.status in (JobStatus.PENDING, JobStatus.RUNNING):
            job.token.cancel()


def _trim_jobs() -> None:
    """Drop the oldest finished jobs beyond ``MAX_JOBS``; caller holds ``_lock``."""
    if MAX_JOBS <= 0:
        return
    excess = len(_jobs) - MAX_JOBS
    for job_id in list(_jobs):
        if excess <= 0:
            break
        job = _jobs[job_id]
        if job.result is not None or job.status == JobStatus.FAILED:
            del _jobs[job_id]
            excess -= 1


def _cluster_timeout() -> float | None:
    return CLUSTER_TIMEOUT_MS / 1000 if CLUSTER_TIMEOUT_MS > 0 else None


def _create_tristogram(track_sources: bool) -> Tristogram:
    config = TristogramConfig(
        builder=HistogramBuilderConfig(track_sources=track_sources),
        max_cluster_points=MAX_CLUSTER_POINTS,
        warn_cluster_points=WARN_CLUSTER_POINTS,
    )
    return Tristogram(config, logger)


def _decode_b64(value: str, label: str) -> bytes:
    try:
        payload = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as error:
        raise HTTPException(status_code=400, detail=f"{label} is not valid base64") from error
    if len(payload) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=413, detail=f"{label} exceeds {MAX_IMAGE_BYTES} bytes")
    return payload


def _stats(histogram_id: str, tristogram: Tristogram) -> HistogramStats:
    return HistogramStats(histogram_id=histogram_id, source=_sources.get(histogram_id), **tristogram.histogram.stats())


async def _get(histogram_id: str) -> Tristogram:
    async with _lock:
        tristogram = _histograms.get(histogram_id)
        if tristogram is not None:
            _histograms.move_to_end(histogram_id)
    if tristogram is None:
        raise HTTPException(status_code=404, detail="Unknown histogram id")
    return tristogram


def _to_response(job: ClusterJob, assignment: ClusterAssignment, status: JobStatus) -> ClusterResponse:
    return ClusterResponse(
        job_id=job.job_id,
        histogram_id=job.histogram_id,
        status=status,
        epsilon=assignment.epsilon,
        min_points=assignment.min_points,
        aborted=assignment.aborted,
        processed=assignment.processed,
        silhouette=assignment.silhouette,
        labels=[int(value) for value in assignment.labels],
        clusters=[
            ClusterInfo(
                id=cluster.id,
                size=cluster.size,
                members=cluster.members,
                centroid=[round(value, 6) for value in cluster.centroid],
                total_frequency=cluster.total_frequency,
            )
            for cluster in assignment.clusters
        ],
        noise=assignment.noise,
    )


@app.get("/health")
def health():
    return {"status": "ok", "service": "tristogram", "version": __version__}


@app.post("/histograms", response_model=HistogramStats)
async def create_histogram(payload: ImageUpload) -> HistogramStats:
    """Decode an image and build its color histogram."""

    started = time.perf_counter()
    tristogram = _create_tristogram(payload.track_sources)
    try:
        if payload.image_base64:
            raster = decode_raster(_decode_b64(payload.image_base64, "image_base64"))
        elif payload.rgba_base64 is not None:
            if payload.width is None or payload.height is None:
                raise HTTPException(status_code=400, detail="width and height are required with rgba_base64")
            raster = raster_from_bytes(payload.width, payload.height, _decode_b64(payload.rgba_base64, "rgba_base64"))
        else:
            raise HTTPException(status_code=400, detail="Provide image_base64 or rgba_base64")
        await asyncio.to_thread(tristogram.load_raster, raster, payload.name)
    except RasterError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error

    histogram_id = uuid4().hex
    async with _lock:
        _histograms[histogram_id] = tristogram
        _sources[histogram_id] = payload.name
        while MAX_HISTOGRAMS > 0 and len(_histograms) > MAX_HISTOGRAMS:
            evicted, _ = _histograms.popitem(last=False)
            _sources.pop(evicted, None)
            _forget_jobs(evicted)
            logger.debug("Evicted histogram %s", evicted)

    logger.info(
        "Histogram %s built in %.2fs (%d colors)",
        histogram_id,
        time.perf_counter() - started,
        tristogram.histogram.nonzero_count,
    )
    return _stats(histogram_id, tristogram)


@app.get("/histograms/{histogram_id}", response_model=HistogramStats)
async def histogram_detail(histogram_id: str) -> HistogramStats:
    tristogram = await _get(histogram_id)
    return _stats(histogram_id, tristogram)


@app.delete("/histograms/{histogram_id}")
async def delete_histogram(histogram_id: str):
    async with _lock:
        removed = _histograms.pop(histogram_id, None)
        _sources.pop(histogram_id, None)
        _forget_jobs(histogram_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Unknown histogram id")
    return {"histogram_id": histogram_id, "deleted": True}


@app.get("/histograms/{histogram_id}/attributes", response_model=AttributesResponse)
async def attributes(histogram_id: str, mode: VisualizationMode = Query(VisualizationMode.OPACITY)) -> AttributesResponse:
    tristogram = await _get(histogram_id)
    encoded = tristogram.attributes(mode)
    return AttributesResponse(
        histogram_id=histogram_id,
        mode=encoded.mode,
        positions=tristogram.histogram.positions.tolist(),
        colors=encoded.colors.reshape(-1).tolist(),
        sizes=encoded.sizes.tolist(),
    )


@app.post("/histograms/{histogram_id}/filter", response_model=FilterResponse)
async def filter_bins(histogram_id: str, payload: FilterRequest) -> FilterResponse:
    tristogram = await _get(histogram_id)
    view = tristogram.filtered(payload.min_threshold, payload.max_threshold, mode=payload.mode)
    return FilterResponse(
        histogram_id=histogram_id,
        min_threshold=view.min_threshold,
        max_threshold=view.max_threshold,
        count_lo=view.count_lo,
        count_hi=view.count_hi,
        indices=view.indices.tolist(),
        positions=view.positions.tolist() if view.positions is not None else [],
        colors=view.colors.tolist() if view.colors is not None else [],
        sizes=view.sizes.tolist() if view.sizes is not None else [],
    )


@app.get("/histograms/{histogram_id}/bins/{index}/sources", response_model=SourcesResponse)
async def bin_sources(histogram_id: str, index: int) -> SourcesResponse:
    tristogram = await _get(histogram_id)
    histogram = tristogram.histogram
    if index < 0 or index >= len(histogram):
        raise HTTPException(status_code=404, detail="Unknown bin index")
    if not histogram.has_sources:
        raise HTTPException(status_code=409, detail="Histogram was built without pixel sources")
    color_bin = histogram.bin(index)
    return SourcesResponse(
        histogram_id=histogram_id,
        index=index,
        color=list(color_bin.color),
        count=color_bin.count,
        sources=[[x, y] for x, y in color_bin.sources or []],
    )


@app.post("/histograms/{histogram_id}/cluster", response_model=ClusterResponse)
async def cluster(histogram_id: str, payload: ClusterRequest) -> ClusterResponse:
    """Run DBSCAN over the histogram colors in a worker thread."""

    tristogram = await _get(histogram_id)
    job_id = payload.job_id or uuid4().hex
    job = ClusterJob(job_id=job_id, histogram_id=histogram_id)
    async with _lock:
        if job_id in _jobs and _jobs[job_id].status == JobStatus.RUNNING:
            raise HTTPException(status_code=409, detail="Job id already running")
        _jobs.pop(job_id, None)
        _jobs[job_id] = job
        job.status = JobStatus.RUNNING
        _trim_jobs()

    started = time.perf_counter()
    try:
        call = asyncio.to_thread(
            tristogram.cluster,
            epsilon=payload.epsilon,
            min_points=payload.min_points,
            min_threshold=payload.min_threshold,
            max_threshold=payload.max_threshold,
            neighbor_search=payload.neighbor_search,
            cancel=job.token,
        )
        timeout = _cluster_timeout()
        assignment = await asyncio.wait_for(call, timeout=timeout) if timeout else await call
    except (ClusteringParameterError, ValueError) as error:
        job.status = JobStatus.FAILED
        raise HTTPException(status_code=422, detail=str(error)) from error
    except ClusteringLimitError as error:
        job.status = JobStatus.FAILED
        raise HTTPException(status_code=413, detail=str(error)) from error
    except asyncio.TimeoutError as error:
        job.token.cancel()
        job.status = JobStatus.FAILED
        logger.warning("Clustering job %s timed out", job_id)
        raise HTTPException(status_code=504, detail="Clustering timed out") from error

    status = JobStatus.STOPPED if assignment.aborted else JobStatus.COMPLETED
    response = _to_response(job, assignment, status)
    response.detail = job.reason
    async with _lock:
        job.status = status
        job.result = response
        _trim_jobs()

    logger.info(
        "Clustering job %s %s in %.2fs (clusters=%d, noise=%d)",
        job_id,
        status.value,
        time.perf_counter() - started,
        assignment.cluster_count,
        assignment.noise_count,
    )
    return response


@app.get("/clusters/{job_id}", response_model=ClusterResponse)
async def cluster_result(job_id: str) -> ClusterResponse:
    async with _lock:
        job = _jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Unknown job id")
    if job.result is not None:
        return job.result
    return ClusterResponse(job_id=job.job_id, histogram_id=job.histogram_id, status=job.status, detail=job.reason)


@app.post("/clusters/{job_id}/stop")
async def stop_cluster(job_id: str, payload: StopRequest | None = None):
    async with _lock:
        job = _jobs.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Unknown job id")
        if job.status in (JobStatus.PENDING, JobStatus.RUNNING):
            job.token.cancel()
            job.reason = payload.reason if payload else None
            job.status = JobStatus.STOPPED
    return {"job_id": job_id, "status": job.status}
