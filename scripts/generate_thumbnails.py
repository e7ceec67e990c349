#!/usr/bin/env python3
"""Generate part thumbnails by rendering each model in the app and screenshotting it.

Run with the dev server up, e.g. `python -m scripts.generate_thumbnails --onlyNew`.
The page at `/?thumbnail` must expose `window.renderThumbnail(category, part)`,
which appends an element with id `--result-id` once the render is done.
"""

import argparse
import json
import os
import shutil
import sys
import time

from playwright.sync_api import sync_playwright

from scripts.retry_selector import retry_selector

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
ENV_PATH = os.path.join(ROOT, ".env")
MANIFEST_PATH = os.path.join(ROOT, "src", "assets.json")
THUMBNAILS_DIR = os.path.join(ROOT, "assets", "thumbnails")
MODELS_DIR = os.path.join(ROOT, "assets", "models")

DEFAULT_HOST = "localhost:8080"
RESULT_ID = "thumbnail-result"
JPEG_QUALITY = 95
CLEAN_PROMPT = "Are you sure you want to delete all existing thumbnails? [y/N] "

DISPOSE_RESULT_JS = """
el => {
  if (el.src) URL.revokeObjectURL(el.src);
  el.remove();
}
"""
RENDER_JS = "([category, part]) => window.renderThumbnail(category, part)"


def load_env(path):
    if not os.path.exists(path):
        return {}
    env = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            env[key.strip()] = value.strip()
    return env


def default_host(env_path=ENV_PATH):
    value = (os.environ.get("THUMBNAIL_HOST") or "").strip()
    if value:
        return value
    return load_env(env_path).get("THUMBNAIL_HOST") or DEFAULT_HOST


def load_manifest(path):
    with open(path, "r", encoding="utf-8") as f:
        manifest = json.load(f)
    if not isinstance(manifest, dict):
        raise ValueError(f"manifest must be a JSON object of categories: {path}")
    return manifest


def iter_parts(manifest):
    for category, entry in manifest.items():
        parts = (entry or {}).get("parts") or []
        for part in parts:
            value = part.get("value") if isinstance(part, dict) else None
            # null value is the "none" option in the picker, nothing to render
            if value is None:
                continue
            yield category, value


def expand_manifest(manifest):
    return [{"category": category, "part": part} for category, part in iter_parts(manifest)]


def find_duplicate_parts(manifest):
    """Map part names used by more than one category to those categories.

    Thumbnails are keyed by part name alone, so such parts overwrite each other.
    """
    seen = {}
    for category, part in iter_parts(manifest):
        categories = seen.setdefault(part, [])
        if category not in categories:
            categories.append(category)
    return {part: categories for part, categories in seen.items() if len(categories) > 1}


def output_path_for(part, output_dir=THUMBNAILS_DIR):
    return os.path.join(output_dir, f"{part}.jpg")


def model_path_for(part, models_dir=MODELS_DIR):
    return os.path.join(models_dir, f"{part}.glb")


def is_stale(part, output_dir=THUMBNAILS_DIR, models_dir=MODELS_DIR):
    output_path = output_path_for(part, output_dir)
    if not os.path.exists(output_path):
        return True
    model_modified = os.path.getmtime(model_path_for(part, models_dir))
    output_modified = os.path.getmtime(output_path)
    return model_modified > output_modified


def build_worklist(
    manifest,
    *,
    only_new=False,
    filter_text=None,
    limit=None,
    output_dir=THUMBNAILS_DIR,
    models_dir=MODELS_DIR,
):
    worklist = expand_manifest(manifest)
    if only_new:
        worklist = [item for item in worklist if is_stale(item["part"], output_dir, models_dir)]
    if filter_text:
        needle = filter_text.lower()
        worklist = [item for item in worklist if needle in item["part"].lower()]
    if limit:
        worklist = worklist[:limit]
    return worklist


def ask_yes_no(prompt_text):
    return input(prompt_text).strip().lower() == "y"


def prepare_output_dir(output_dir, *, dry_run=False, no_clean=False, force_clean=False, confirm=ask_yes_no):
    """Make sure ``output_dir`` exists, wiping it first unless told not to.

    Returns False when the user declines the wipe and the run should stop.
    """
    if dry_run:
        return True
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)
        return True
    if no_clean:
        return True
    if force_clean or confirm(CLEAN_PROMPT):
        shutil.rmtree(output_dir)
        os.makedirs(output_dir)
        return True
    print("Exiting.")
    return False


def attach_browser_logs(page):
    page.on("console", lambda msg: print("browser log: ", msg.text))
    page.on("pageerror", lambda err: print("browser error: ", err))


class ThumbnailGenerator:
    def __init__(
        self,
        page,
        *,
        output_dir=THUMBNAILS_DIR,
        result_id=RESULT_ID,
        retries=5,
        delay=1.0,
        dry_run=False,
        sleep=None,
    ):
        self.page = page
        self.output_dir = output_dir
        self.result_id = result_id
        self.retries = retries
        self.delay = delay
        self.dry_run = dry_run
        self.sleep = sleep or (lambda seconds: page.wait_for_timeout(seconds * 1000))
        self.result = None

    def dispose_result(self):
        if self.result is None:
            return
        result, self.result = self.result, None
        result.evaluate(DISPOSE_RESULT_JS)
        result.dispose()

    def render(self, category, part):
        # The hook returns nothing; completion shows up as the result element.
        self.page.evaluate(RENDER_JS, [category, part])

    def generate(self, category, part):
        self.dispose_result()
        self.render(category, part)
        self.result = retry_selector(
            self.page,
            f"#{self.result_id}",
            retries=self.retries,
            delay=self.delay,
            sleep=self.sleep,
        )
        self.result.scroll_into_view_if_needed()

        params = {"type": "jpeg", "quality": JPEG_QUALITY}
        out_path = None
        if not self.dry_run:
            out_path = output_path_for(part, self.output_dir)
            params["path"] = out_path
        self.result.screenshot(**params)
        return out_path

    def run(self, worklist):
        total = len(worklist)
        start = time.monotonic()
        for i, item in enumerate(worklist, start=1):
            print(f"[{i}/{total}] Generating {item['category']} {item['part']}")
            self.generate(item["category"], item["part"])
        elapsed_minutes = (time.monotonic() - start) / 60
        print(f"Generated {total} thumbnails in {elapsed_minutes:.1f} minutes.")
        return total


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Render part thumbnails through the app's thumbnail page.")
    parser.add_argument("--host", dest="host", default=None, help="dev server host:port (default: THUMBNAIL_HOST or localhost:8080)")
    parser.add_argument("--dryRun", "--dry-run", dest="dry_run", action="store_true", help="render everything but write no files")
    parser.add_argument("--noClean", "--no-clean", dest="no_clean", action="store_true", help="keep existing thumbnails")
    parser.add_argument("--forceClean", "--force-clean", dest="force_clean", action="store_true", help="delete existing thumbnails without asking")
    parser.add_argument(
        "--onlyNew",
        "--only-new",
        dest="only_new",
        action="store_true",
        help="only parts whose model is newer than the thumbnail (implies --noClean)",
    )
    parser.add_argument("--filter", dest="filter_text", default=None, help="only parts whose name contains this text (case-insensitive)")
    parser.add_argument("--limit", dest="limit", type=int, default=None, help="generate at most N thumbnails")
    parser.add_argument("--noHeadless", "--no-headless", dest="no_headless", action="store_true", help="show the browser and leave it open")
    parser.add_argument("--browserLogs", "--browser-logs", dest="browser_logs", action="store_true", help="relay browser console output")
    parser.add_argument("--manifest", dest="manifest", default=MANIFEST_PATH, help="asset manifest JSON (default: src/assets.json)")
    parser.add_argument("--output-dir", dest="output_dir", default=THUMBNAILS_DIR, help="thumbnail directory (default: assets/thumbnails)")
    parser.add_argument("--models-dir", dest="models_dir", default=MODELS_DIR, help="model directory for --onlyNew (default: assets/models)")
    parser.add_argument("--result-id", dest="result_id", default=RESULT_ID, help=f"id of the rendered result element (default: {RESULT_ID})")
    parser.add_argument("--retries", dest="retries", type=int, default=5, help="result lookups per part (default: 5)")
    parser.add_argument("--delay", dest="delay", type=float, default=1.0, help="seconds between lookups (default: 1.0)")
    args = parser.parse_args(argv)
    if args.only_new:
        args.no_clean = True
    if not args.host:
        args.host = default_host()
    return args


def main(argv=None, confirm=ask_yes_no):
    args = parse_args(argv)
    if args.limit is not None and args.limit < 0:
        raise SystemExit("invalid --limit, expected >= 0")
    if args.retries < 1:
        raise SystemExit("invalid --retries, expected >= 1")
    if args.delay < 0:
        raise SystemExit("invalid --delay, expected >= 0")

    manifest = load_manifest(args.manifest)
    for part, categories in sorted(find_duplicate_parts(manifest).items()):
        print(f"warning: part {part!r} appears in {', '.join(categories)}; thumbnails will overwrite", file=sys.stderr)

    if not prepare_output_dir(
        args.output_dir,
        dry_run=args.dry_run,
        no_clean=args.no_clean,
        force_clean=args.force_clean,
        confirm=confirm,
    ):
        return 0

    worklist = build_worklist(
        manifest,
        only_new=args.only_new,
        filter_text=args.filter_text,
        limit=args.limit,
        output_dir=args.output_dir,
        models_dir=args.models_dir,
    )

    with sync_playwright() as p:
        browser = p.chromium.launch(headless=not args.no_headless)
        page = browser.new_page()
        if args.browser_logs:
            attach_browser_logs(page)
        page.goto(f"http://{args.host}/?thumbnail")

        generator = ThumbnailGenerator(
            page,
            output_dir=args.output_dir,
            result_id=args.result_id,
            retries=args.retries,
            delay=args.delay,
            dry_run=args.dry_run,
        )
        generator.run(worklist)

        if args.no_headless:
            input("Browser left open for inspection, press Enter to close. ")
        browser.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
