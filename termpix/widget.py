#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from dataclasses import dataclass, replace
from queue import Empty, Full, Queue
from threading import Event, Lock, Thread
from time import monotonic
from typing import NamedTuple, TextIO, TypeVar

from .errors import ConfigurationError
from .image import Image
from .types import Protocol, ScaleMode

T = TypeVar('T')
WORKER_POLL_INTERVAL = 0.05


class RenderRequest(NamedTuple):
    width: int
    height: int
    protocol: Protocol = Protocol.auto
    scale: ScaleMode = ScaleMode.fit
    virtual: bool = False
    z_index: int = 0


@dataclass(frozen=True)
class RenderOutcome:
    output: str = ''
    width: int = 0
    height: int = 0
    duration: float = 0
    error: Exception | None = None
    # an async render for the current viewport has not finished yet
    pending: bool = False
    # the viewport is smaller than the configured minimum
    skipped: bool = False
    # the request this outcome was rendered for
    request: RenderRequest | None = None

    @property
    def has_result(self) -> bool:
        return bool(self.output) or self.error is not None or self.skipped


def render_once(base: Image, req: RenderRequest) -> RenderOutcome:
    img = base.clone().size(req.width, req.height).scale(req.scale).protocol(req.protocol).virtual(req.virtual).zindex(req.z_index)
    start = monotonic()
    try:
        output = img.render()
    except Exception as err:
        # reported to the caller through the outcome, workers must keep running
        return RenderOutcome(width=req.width, height=req.height, duration=monotonic() - start, error=err, request=req)
    return RenderOutcome(output, req.width, req.height, monotonic() - start, request=req)


def put_latest(q: 'Queue[T]', item: T) -> None:
    ' Put item into q, evicting the oldest entries if q is full '
    while True:
        try:
            q.put_nowait(item)
            return
        except Full:
            try:
                q.get_nowait()
            except Empty:
                pass


def target_size(view_w: int, view_h: int, img_w: int, img_h: int, mode: ScaleMode) -> tuple[int, int]:
    ' Render size in cells for an image shown in a view_w x view_h viewport '
    if view_w <= 0 or view_h <= 0 or img_w <= 0 or img_h <= 0:
        return 0, 0
    if mode is ScaleMode.fill or mode is ScaleMode.stretch:
        return view_w, view_h
    if mode is ScaleMode.none:
        return min(img_w, view_w), min(img_h, view_h)
    ratio = img_w / img_h
    w, h = view_w, int(view_w / ratio)
    if h > view_h:
        h = view_h
        w = int(h * ratio)
    return max(1, w), max(1, h)


class AsyncRenderWorker:
    '''Renders an image on background threads. Only the newest request and the
    newest result are kept, so a slow render never delays the current
    viewport.'''

    def __init__(self, img: Image, workers: int = 1, queue_size: int = 1):
        self.base = img.clone()
        self.requests: Queue[RenderRequest] = Queue(maxsize=max(1, queue_size))
        self.results: Queue[RenderOutcome] = Queue(maxsize=max(1, queue_size))
        self.lock = Lock()
        self.last_requested: RenderRequest | None = None
        self.last_result = RenderOutcome()
        self.stopped = Event()
        self.threads = [Thread(target=self.loop, name=f'termpix-render-{i}', daemon=True) for i in range(max(1, workers))]
        for t in self.threads:
            t.start()

    def __enter__(self) -> 'AsyncRenderWorker':
        return self

    def __exit__(self, *a: object) -> None:
        self.close()

    def schedule(self, req: RenderRequest) -> None:
        with self.lock:
            if req == self.last_requested:
                return
            self.last_requested = req
        put_latest(self.requests, req)

    def try_latest(self) -> RenderOutcome | None:
        while True:
            try:
                res = self.results.get_nowait()
            except Empty:
                break
            with self.lock:
                self.last_result = res
        with self.lock:
            res = self.last_result
        return res if res.has_result else None

    def wait_for(self, req: RenderRequest, timeout: float = 5) -> RenderOutcome | None:
        ' Block until a result for req is available or timeout expires '
        deadline = monotonic() + timeout
        while True:
            res = self.try_latest()
            if res is not None and res.request == req:
                return res
            remaining = deadline - monotonic()
            if remaining <= 0:
                return None
            try:
                res = self.results.get(timeout=min(remaining, WORKER_POLL_INTERVAL))
            except Empty:
                continue
            with self.lock:
                self.last_result = res

    def loop(self) -> None:
        while not self.stopped.is_set():
            try:
                req = self.requests.get(timeout=WORKER_POLL_INTERVAL)
            except Empty:
                continue
            put_latest(self.results, render_once(self.base, req))

    def close(self) -> None:
        self.stopped.set()
        for t in self.threads:
            t.join()


class StatefulImageWidget:
    ' Tracks the viewport size and re-renders only when it changes '

    def __init__(self, img: Image):
        self.image = img
        self.protocol = Protocol.auto
        self.scale_mode = ScaleMode.fit
        self.min_width = self.min_height = 1
        self.virtual = False
        self.z_index = 0
        self.worker: AsyncRenderWorker | None = None
        self.owns_worker = False
        self.lock = Lock()
        self.last_target: RenderRequest | None = None
        self.last_result = RenderOutcome()

    def set_protocol(self, p: Protocol | str) -> 'StatefulImageWidget':
        self.protocol = Protocol.from_literal(p)
        return self

    def set_scale_mode(self, mode: ScaleMode | str) -> 'StatefulImageWidget':
        self.scale_mode = ScaleMode.from_literal(mode)
        return self

    def set_minimum_cells(self, min_width: int, min_height: int) -> 'StatefulImageWidget':
        self.min_width, self.min_height = max(1, min_width), max(1, min_height)
        return self

    def set_virtual(self, yes: bool = True) -> 'StatefulImageWidget':
        self.virtual = yes
        return self

    def set_z_index(self, z: int) -> 'StatefulImageWidget':
        self.z_index = z
        return self

    def enable_async(self, workers: int = 1) -> 'StatefulImageWidget':
        self.close()
        self.worker = AsyncRenderWorker(self.image, workers)
        self.owns_worker = True
        return self

    def with_worker(self, worker: AsyncRenderWorker) -> 'StatefulImageWidget':
        ' Use a worker shared with other widgets, it is not closed by close() '
        self.close()
        self.worker = worker
        return self

    def close(self) -> None:
        if self.worker is not None and self.owns_worker:
            self.worker.close()
        self.worker, self.owns_worker = None, False

    def request_for(self, width: int, height: int) -> RenderRequest:
        return RenderRequest(width, height, self.protocol, self.scale_mode, self.virtual, self.z_index)

    def render_into(self, width: int, height: int) -> RenderOutcome:
        with self.lock:
            tw, th = target_size(width, height, self.image.source.width, self.image.source.height, self.scale_mode)
            req = self.request_for(tw, th)
            if tw < self.min_width or th < self.min_height:
                return RenderOutcome(width=tw, height=th, skipped=True, request=req)
            last = self.last_result
            if req == self.last_target and last.request == req and last.output and last.error is None and not last.pending:
                return last
            self.last_target = req
            if self.worker is None:
                self.last_result = render_once(self.image, req)
                return self.last_result
            self.worker.schedule(req)
            res = self.worker.try_latest()
            if res is not None:
                self.last_result = res
            if self.last_result.request != req:
                return replace(self.last_result, pending=True)
            return self.last_result


class ImageWidget:
    ' An image at a fixed size and position inside a text UI '

    def __init__(self, img: Image):
        self.image = img.clone()
        self.width = self.height = 0
        self.x = self.y = 0
        self.protocol = Protocol.auto
        self.virtual = False
        self.z_index = 0
        self.image_id = 0
        self.rendered = ''
        self.needs_update = True

    @classmethod
    def from_file(cls, path: str) -> 'ImageWidget':
        return cls(Image.open(path))

    def set_size(self, width: int, height: int) -> 'ImageWidget':
        if (width, height) != (self.width, self.height):
            self.width, self.height = width, height
            self.needs_update = True
        return self

    def set_size_with_correction(self, width: int, height: int) -> 'ImageWidget':
        ' Shrink width or height so that the image keeps its aspect ratio in cells twice as tall as wide '
        src_w, src_h = self.image.source.size
        image_ratio = src_w / max(1, src_h)
        widget_ratio = width / max(1, 2 * height)
        if image_ratio > widget_ratio:
            height = int(width / image_ratio / 2)
        else:
            width = int(2 * height * image_ratio)
        return self.set_size(max(1, width), max(1, height))

    def set_position(self, x: int, y: int) -> 'ImageWidget':
        self.x, self.y = x, y
        return self

    def set_protocol(self, p: Protocol | str) -> 'ImageWidget':
        p = Protocol.from_literal(p)
        if p is not self.protocol:
            self.protocol = p
            self.needs_update = True
        return self

    def set_virtual(self, yes: bool = True) -> 'ImageWidget':
        if yes != self.virtual:
            self.virtual = yes
            self.needs_update = True
        return self

    def set_z_index(self, z: int) -> 'ImageWidget':
        if z != self.z_index:
            self.z_index = z
            self.needs_update = True
        return self

    def update(self) -> None:
        self.needs_update = True

    def configured_image(self) -> Image:
        img = self.image.protocol(self.protocol).size(self.width, self.height)
        if self.protocol is Protocol.kitty:
            img.virtual(self.virtual).zindex(self.z_index)
        return img

    def render(self) -> str:
        if not self.needs_update and self.rendered:
            return self.rendered
        img = self.configured_image().position(None, None)
        self.rendered = img.render()
        self.needs_update = False
        if self.protocol is Protocol.kitty and self.virtual:
            self.image_id = img.get_renderer().placement.last_image_id
        return self.rendered

    def render_virtual(self) -> str:
        '''Transmit the image if needed and place it at the widget position
        using Unicode placeholders. Only the kitty protocol supports this.'''
        if self.protocol is not Protocol.kitty:
            raise ConfigurationError('Virtual placement is only supported with the kitty protocol')
        self.set_virtual(True)
        if not self.needs_update and self.image_id:
            from .kitty import KittyRenderer
            renderer = self.image.get_renderer()
            assert isinstance(renderer, KittyRenderer)
            return renderer.placement_sequence(self.image_id, self.x, self.y, self.width, self.height, self.z_index)
        img = self.configured_image().position(self.x, self.y)
        self.rendered = img.render()
        self.needs_update = False
        self.image_id = img.get_renderer().placement.last_image_id
        return self.rendered

    def place_at(self, x: int, y: int) -> str:
        return self.set_position(x, y).render_virtual()

    def clear(self, output: TextIO | None = None) -> None:
        self.image.clear_all(output)
        self.image_id = 0
        self.needs_update = True


def combine_horizontally(outputs: list[str], spacing: int) -> str:
    ' Lay out multi-line renders side by side '
    columns = [o.split('\n') for o in outputs]
    num_lines = max((len(c) for c in columns), default=0)
    sep = ' ' * spacing
    lines = []
    for i in range(num_lines):
        lines.append(sep.join(c[i] if i < len(c) else '' for c in columns))
    return '\n'.join(lines)


class ImageGallery:
    ' A grid of images rendered as text, columns images per row '

    def __init__(self, columns: int = 3, spacing: int = 2):
        self.columns = max(1, columns)
        self.spacing = spacing
        self.protocol = Protocol.auto
        self.widgets: list[ImageWidget] = []

    def add_image(self, img: Image) -> 'ImageGallery':
        self.widgets.append(ImageWidget(img).set_protocol(self.protocol))
        return self

    def add_image_from_file(self, path: str) -> 'ImageGallery':
        return self.add_image(Image.open(path))

    def set_protocol(self, p: Protocol | str) -> 'ImageGallery':
        self.protocol = Protocol.from_literal(p)
        for w in self.widgets:
            w.set_protocol(self.protocol)
        return self

    def set_spacing(self, spacing: int) -> 'ImageGallery':
        self.spacing = max(0, spacing)
        return self

    def set_image_size(self, width: int, height: int) -> 'ImageGallery':
        for w in self.widgets:
            w.set_size(width, height)
        return self

    def update_all(self) -> None:
        for w in self.widgets:
            w.update()

    def render(self) -> str:
        rows = []
        for start in range(0, len(self.widgets), self.columns):
            rows.append(combine_horizontally([w.render() for w in self.widgets[start:start + self.columns]], self.spacing))
        return ('\n' * (self.spacing + 1)).join(rows)
