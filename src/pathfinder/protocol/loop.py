"""
Runs a blocking loop on a background thread.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class AsyncLoop:
    """ Repeatedly runs loop() on a background daemon thread.

        The loop ends when stop() is called, when loop() returns False, or when loop()
        raises. An exception is passed to exception_handler(), so the thread never
        dies with an unhandled error. startup() and shutdown() are template methods run
        on the background thread before the first and after the last iteration.
    """

    def __init__(self, fn=None, args=(), name=None, log=logger):
        """
        :param fn the function to run. It returns False when there is no more work.
        :param args arguments to pass to fn
        """
        self.fn = fn
        self.args = args
        self.name = name
        self.stop_event = threading.Event()
        self.background_thread = None
        self.logger = log
        self._start_lock = threading.Lock()

    def start(self):
        """ Starts the background thread. Starting an already started loop does nothing. """
        with self._start_lock:
            if self.background_thread is None:
                t = threading.Thread(target=self._run, name=self.name, daemon=True)
                self.background_thread = t
                t.start()

    def exception_handler(self, e):
        self.logger.exception(e)

    def _run(self):
        self._do(self.startup)
        try:
            while self.running():
                if self.loop() is False:
                    break
        except Exception as e:
            self._do(self.exception_handler, e)
        finally:
            self._do(self.shutdown)
            self.logger.debug("background thread %s exiting", threading.current_thread().name)

    def _do(self, callme, *args):
        """ runs a template method, logging anything it raises """
        try:
            callme(*args)
        except Exception as e:
            self.logger.exception(e)

    def startup(self):
        """ template method called when the thread starts"""
        pass

    def loop(self):
        return self.fn(*self.args)

    def shutdown(self):
        """ template method called when the thread exits """
        pass

    def running(self):
        return not self.stop_event.is_set()

    def on_background_thread(self):
        return self.background_thread is threading.current_thread()

    def request_stop(self):
        """ asks the loop to exit after the current iteration, without waiting. """
        self.stop_event.set()

    def stop(self, timeout=None):
        """ stops the loop and waits for the background thread to exit.
            Does not wait when called from the background thread itself.
        :return: True if the thread has exited, or was never started
        """
        self.request_stop()
        thread = self.background_thread
        if thread is None or thread is threading.current_thread():
            return thread is None
        thread.join(timeout)
        return not thread.is_alive()
