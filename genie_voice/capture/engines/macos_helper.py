"""
Continuous speech recognition helper using the macOS Speech framework.

Run as ``python -m genie_voice.capture.engines.macos_helper``. Records one
utterance at a time from the microphone, recognizes it with
SFSpeechRecognizer and prints one line per result on stdout:

    PARTIAL: <text>   in-progress hypothesis
    FINAL: <text>     finished utterance; a new session starts right after
    ERROR: <message>  recognition problem
"""

import os
import sys
import tempfile
import time

from ...config import Config
from ...exceptions import GenieVoiceError
from ..audio import MicrophoneStream, UtteranceSegmenter, pcm_to_wav

# macOS Speech Recognition delegate class (defined once at module level)
_recognition_delegate_class = None
# Keep references to delegates to prevent garbage collection
_delegate_refs = []


def emit(kind: str, text: str) -> None:
    print(f"{kind}: {text}", flush=True)


def _get_recognition_delegate_class():
    """Get or create the recognition delegate class."""
    global _recognition_delegate_class
    if _recognition_delegate_class is None:
        from Foundation import NSObject
        import objc

        class RecognitionDelegate(NSObject):
            def initWithResultContainer_(self, result_container):
                self = objc.super(RecognitionDelegate, self).init()
                if self is None:
                    return None
                self.result_container = result_container
                return self

            def speechRecognitionTask_didHypothesizeTranscription_(self, task, transcription):
                text = transcription.formattedString()
                if text:
                    emit("PARTIAL", text)

            def speechRecognitionTask_didFinishRecognition_(self, task, result):
                if result:
                    best_transcription = result.bestTranscription()
                    if best_transcription:
                        self.result_container['text'] = best_transcription.formattedString()
                self.result_container['done'] = True

            def speechRecognitionTask_didFinishSuccessfully_(self, task, finished):
                if not finished:
                    self.result_container['error'] = "Recognition did not finish successfully"
                self.result_container['done'] = True

        _recognition_delegate_class = RecognitionDelegate
    return _recognition_delegate_class


def recognize_file(recognizer, wav_path: str, safety_timeout: float = 30.0) -> None:
    """Recognize one WAV file, emitting partial results and then one final or error line."""
    from Speech import SFSpeechURLRecognitionRequest
    from Foundation import NSURL, NSDate
    from Cocoa import NSRunLoop, NSDefaultRunLoopMode

    url = NSURL.fileURLWithPath_(wav_path)
    request = SFSpeechURLRecognitionRequest.alloc().initWithURL_(url)
    request.setShouldReportPartialResults_(True)
    if recognizer.supportsOnDeviceRecognition():
        request.setRequiresOnDeviceRecognition_(True)

    result_container = {'text': None, 'done': False, 'error': None}
    delegate = _get_recognition_delegate_class().alloc().initWithResultContainer_(result_container)
    _delegate_refs.append(delegate)
    if len(_delegate_refs) > 5:
        _delegate_refs.pop(0)

    task = recognizer.recognitionTaskWithRequest_delegate_(request, delegate)

    start_time = time.time()
    while not result_container['done']:
        if time.time() - start_time > safety_timeout:
            task.cancel()
            result_container['error'] = f"Recognition safety timeout after {safety_timeout:.1f}s"
            break
        # Process run loop events so delegate callbacks fire
        ns_date = NSDate.dateWithTimeIntervalSince1970_(time.time() + 0.1)
        NSRunLoop.currentRunLoop().runMode_beforeDate_(NSDefaultRunLoopMode, ns_date)

    if result_container['error']:
        emit("ERROR", result_container['error'])
    elif result_container['text']:
        emit("FINAL", result_container['text'].strip())


def main() -> int:
    try:
        from Speech import SFSpeechRecognizer
        from Foundation import NSLocale
    except ImportError:
        emit("ERROR", "PyObjC not installed. Install with: pip install pyobjc-framework-Speech")
        return 1

    locale = NSLocale.localeWithLocaleIdentifier_("en-US")
    recognizer = SFSpeechRecognizer.alloc().initWithLocale_(locale)
    if recognizer is None or not recognizer.isAvailable():
        emit("ERROR", "Speech recognition not available")
        return 1

    config = Config()
    segmenter = UtteranceSegmenter.from_config(config)
    try:
        stream = MicrophoneStream(config.frame_samples).open()
    except GenieVoiceError as e:
        emit("ERROR", str(e))
        return 1

    try:
        while True:
            try:
                utterance = segmenter.process(stream.read())
            except GenieVoiceError as e:
                emit("ERROR", str(e))
                return 1
            if utterance is None:
                continue

            with tempfile.NamedTemporaryFile(suffix='.wav', delete=False) as tmp_file:
                tmp_file.write(pcm_to_wav(utterance))
                tmp_path = tmp_file.name
            try:
                recognize_file(recognizer, tmp_path)
            except Exception as e:
                emit("ERROR", f"Error with macOS speech recognition: {e}")
            finally:
                os.unlink(tmp_path)
    except KeyboardInterrupt:
        return 0
    finally:
        stream.close()


if __name__ == "__main__":
    sys.exit(main())
