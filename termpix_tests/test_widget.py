#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import tempfile
from io import StringIO
from queue import Queue

from termpix import Image
from termpix.detect import query_terminal_features
from termpix.errors import ConfigurationError
from termpix.halfblocks import UPPER_HALF
from termpix.types import Protocol, ScaleMode
from termpix.widget import (
    AsyncRenderWorker,
    ImageGallery,
    ImageWidget,
    RenderRequest,
    StatefulImageWidget,
    combine_horizontally,
    put_latest,
    render_once,
    target_size,
)

from . import BaseTest, png_bytes, solid_image


class TestWidget(BaseTest):

    def image(self, width=4, height=4, **kw):
        return Image.new_from_image(solid_image(width, height)).features(self.features(**kw))

    def test_target_size(self):
        self.ae(target_size(80, 24, 100, 50, ScaleMode.fit), (48, 24))
        self.ae(target_size(80, 24, 100, 10, ScaleMode.fit), (80, 8))
        self.ae(target_size(80, 24, 100, 50, ScaleMode.fill), (80, 24))
        self.ae(target_size(80, 24, 100, 50, ScaleMode.stretch), (80, 24))
        self.ae(target_size(80, 24, 100, 10, ScaleMode.none), (80, 10))
        self.ae(target_size(0, 24, 100, 50, ScaleMode.fit), (0, 0))

    def test_put_latest(self):
        q = Queue(maxsize=1)
        put_latest(q, 1)
        put_latest(q, 2)
        self.ae(q.get_nowait(), 2)
        self.assertTrue(q.empty())

    def test_stateful_widget(self):
        w = StatefulImageWidget(self.image()).set_protocol('halfblocks')
        res = w.render_into(10, 5)
        self.assertIsNone(res.error)
        self.ae((res.width, res.height), (5, 5))
        self.assertIn(UPPER_HALF, res.output)
        self.assertFalse(res.pending)
        # same viewport, nothing is rendered again
        self.assertIs(w.render_into(10, 5), res)
        res2 = w.render_into(20, 20)
        self.ae((res2.width, res2.height), (20, 20))
        self.assertIsNot(res2, res)

    def test_minimum_cells(self):
        w = StatefulImageWidget(self.image()).set_protocol('halfblocks').set_minimum_cells(5, 5)
        res = w.render_into(3, 3)
        self.assertTrue(res.skipped)
        self.assertTrue(res.has_result)
        self.ae(res.output, '')
        self.assertFalse(w.render_into(6, 6).skipped)

    def test_errors_are_reported(self):
        img = self.image()
        img.options.kitty.image_id = -1
        w = StatefulImageWidget(img).set_protocol('kitty')
        res = w.render_into(4, 4)
        self.assertIsInstance(res.error, ConfigurationError)
        self.ae(res.output, '')
        # failed renders are retried
        self.assertIsNot(w.render_into(4, 4), res)

    def test_async_worker(self):
        with AsyncRenderWorker(self.image(), workers=2) as worker:
            self.ae(len(worker.threads), 2)
            req = RenderRequest(4, 2, Protocol.halfblocks)
            worker.schedule(req)
            res = worker.wait_for(req)
            self.assertIsNotNone(res)
            self.assertIn(UPPER_HALF, res.output)
            self.ae((res.width, res.height), (4, 2))
            self.assertGreaterEqual(res.duration, 0)
            self.assertIs(worker.try_latest(), res)
        self.assertFalse(any(t.is_alive() for t in worker.threads))

    def test_async_widget(self):
        w = StatefulImageWidget(self.image()).set_protocol('halfblocks').enable_async()
        try:
            res = w.render_into(8, 8)
            if res.pending:
                self.assertIsNotNone(w.worker.wait_for(w.request_for(8, 8)))
                res = w.render_into(8, 8)
            self.assertFalse(res.pending)
            self.assertIn(UPPER_HALF, res.output)
            self.ae((res.width, res.height), (8, 8))
        finally:
            worker = w.worker
            w.close()
        self.assertIsNone(w.worker)
        self.assertFalse(any(t.is_alive() for t in worker.threads))

    def test_async_result_for_other_settings_is_stale(self):
        img = self.image()
        worker = AsyncRenderWorker(img)
        # results are fed by hand from here on
        worker.close()
        w = StatefulImageWidget(img).set_protocol('halfblocks').with_worker(worker)
        half = w.request_for(8, 8)
        put_latest(worker.results, render_once(img, half))
        res = w.render_into(8, 8)
        self.assertFalse(res.pending)
        self.ae(res.request, half)
        for change in (lambda: w.set_z_index(3), lambda: w.set_scale_mode('stretch'), lambda: w.set_virtual(True)):
            change()
            res = w.render_into(8, 8)
            self.ae((res.width, res.height), (8, 8))
            self.assertTrue(res.pending)
            self.ae(res.request, half)
            current = w.request_for(8, 8)
            self.assertNotEqual(current, half)
            self.assertIsNone(worker.wait_for(current, timeout=0))
            put_latest(worker.results, render_once(img, current))
            res = w.render_into(8, 8)
            self.assertFalse(res.pending)
            self.ae(res.request, current)
            half = current
        w.set_protocol('sixel')
        res = w.render_into(8, 8)
        self.assertTrue(res.pending)
        self.assertIn(UPPER_HALF, res.output)

    def test_shared_worker(self):
        with AsyncRenderWorker(self.image()) as worker:
            w = StatefulImageWidget(self.image()).with_worker(worker)
            w.close()
            # shared workers are left running
            self.assertTrue(all(t.is_alive() for t in worker.threads))

    def test_image_widget(self):
        w = ImageWidget(self.image()).set_protocol('halfblocks').set_size(2, 1)
        out = w.render()
        self.ae(out, '\033[38;2;255;0;0m\033[48;2;255;0;0m' + UPPER_HALF * 2 + '\033[0m')
        self.assertFalse(w.needs_update)
        self.assertIs(w.render(), out)
        w.set_size(4, 2)
        self.assertTrue(w.needs_update)
        self.ae(w.render().count(UPPER_HALF), 8)
        with self.assertRaises(ConfigurationError):
            w.render_virtual()

    def test_size_correction(self):
        w = ImageWidget(self.image(4, 4)).set_size_with_correction(20, 20)
        self.ae((w.width, w.height), (20, 10))
        w = ImageWidget(self.image(8, 2)).set_size_with_correction(20, 10)
        self.ae((w.width, w.height), (20, 2))

    def test_virtual_widget(self):
        w = ImageWidget(self.image(kitty_graphics=True)).set_protocol('kitty').set_size(2, 1).set_position(1, 2)
        first = w.render_virtual()
        self.assertIn('a=t', first)
        self.assertIn('\033[3;2H', first)
        self.assertTrue(w.image_id)
        again = w.render_virtual()
        # already transmitted, only placed again
        self.assertTrue(again.startswith(f'\033_Ga=p,U=1,i={w.image_id},c=2,r=1,q=2\033\\'))
        self.assertNotIn('a=t', again)
        moved = w.place_at(5, 6)
        self.assertIn('\033[7;6H', moved)
        out = StringIO()
        w.clear(out)
        self.ae(out.getvalue(), '\033_Ga=d,d=a,q=2\033\\')
        self.ae(w.image_id, 0)
        self.assertTrue(w.needs_update)

    def test_combine_horizontally(self):
        self.ae(combine_horizontally(['a\nb', 'c'], 2), 'a  c\nb  ')
        self.ae(combine_horizontally([], 2), '')

    def test_gallery(self):
        g = ImageGallery(columns=2, spacing=1)
        for i in range(3):
            g.add_image(self.image())
        g.set_protocol('halfblocks').set_image_size(2, 1)
        cell = '\033[38;2;255;0;0m\033[48;2;255;0;0m' + UPPER_HALF * 2 + '\033[0m'
        self.ae(g.render(), cell + ' ' + cell + '\n\n' + cell)
        g.update_all()
        self.assertTrue(all(w.needs_update for w in g.widgets))

    def test_scale_mode(self):
        w = StatefulImageWidget(self.image()).set_protocol('halfblocks').set_scale_mode('stretch')
        res = w.render_into(6, 3)
        self.ae((res.width, res.height), (6, 3))
        self.ae(res.output.count(UPPER_HALF), 18)
        # a new z-index is a new request
        w.set_z_index(1)
        self.assertIsNot(w.render_into(6, 3), res)

    def test_from_file(self):
        query_terminal_features.set_override(self.features())
        with tempfile.TemporaryDirectory() as tdir:
            path = os.path.join(tdir, 'red.png')
            with open(path, 'wb') as f:
                f.write(png_bytes(solid_image(4, 4)))
            w = ImageWidget.from_file(path).set_protocol('halfblocks').set_size(2, 1)
            cell = w.render()
            w.set_z_index(3)
            self.assertTrue(w.needs_update)
            g = ImageGallery(columns=2).set_spacing(0).set_protocol('halfblocks')
            g.add_image_from_file(path).add_image_from_file(path).set_image_size(2, 1)
            self.ae(g.render(), cell + cell)
