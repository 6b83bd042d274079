"""Tests for challenge detection."""

from site_snacker.challenge import ChallengeDetector, ChallengeSignature


def test_first_matching_marker_wins():
    detector = ChallengeDetector.from_markers(["Just a moment...", "cf-browser-verification"])
    body = "<title>Just a moment...</title><div id='cf-browser-verification'></div>"
    assert detector.detect(body) == "Just a moment..."


def test_clean_and_empty_bodies():
    detector = ChallengeDetector.from_markers(["Just a moment..."])
    assert detector.detect("<p>hello</p>") is None
    assert detector.detect("") is None
    assert detector.detect(None) is None


def test_custom_signature():
    detector = ChallengeDetector()
    detector.add(ChallengeSignature(name="tiny-body", matches=lambda body: len(body) < 10))
    assert [signature.name for signature in detector.signatures] == ["tiny-body"]
    assert detector.detect("<p/>") == "tiny-body"
    assert detector.detect("<p>plenty of real content</p>") is None


def test_default_markers_ignore_the_cloudflare_beacon(config):
    detector = ChallengeDetector.from_markers(config.fetcher.challenge_markers)
    page = (
        "<html><body><p>Real article text.</p>"
        '<script src="/cdn-cgi/challenge-platform/scripts/jsd/main.js"></script></body></html>'
    )
    interstitial = "<html><script>window._cf_chl_opt={cvId: '3'};</script></html>"
    assert detector.detect(page) is None
    assert detector.detect(interstitial) == "_cf_chl_opt"
