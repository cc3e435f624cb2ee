import atexit

from shelfpass import create_app
from shelfpass.utils.scheduler import get_scheduler

app = create_app()

if app.config['SCHEDULER_ENABLED']:
    sweep = get_scheduler(app)
    sweep.start()
    atexit.register(sweep.shutdown)


if __name__ == '__main__':
    app.run(debug=True)
