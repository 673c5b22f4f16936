import io
from datetime import datetime, timedelta

from mysql2pg.models import Inconsistency, StageStat
from mysql2pg.reporter import ProgressBar, print_inconsistencies, print_summary, print_version_table, render_bar


def test_render_bar():
    assert render_bar(0) == '>' + ' ' * 19
    assert render_bar(50) == '-' * 10 + '>' + ' ' * 9
    assert render_bar(100) == '-' * 20 + '>'


def test_progress_suppresses_small_changes():
    stream = io.StringIO()
    bar = ProgressBar(stream=stream)

    assert bar.update('t', 1000, 100000, 0, 4) is True
    assert bar.update('t', 1100, 100000, 0, 4) is False
    assert bar.update('t', 1600, 100000, 0, 4) is True
    assert bar.update('t', 5000, 100000, 0, 4) is True

    lines = stream.getvalue().split('\r')
    assert len(lines) == 4
    assert lines[1].startswith(' Progress: 0.00% (0/4) : sync table t [')
    assert '] 1.00%' in lines[1]


def test_progress_line_format():
    stream = io.StringIO()
    ProgressBar(stream=stream).update('orders', 50, 100, 1, 4)
    assert stream.getvalue() == (
        '\033[2K\r Progress: 25.00% (1/4) : sync table orders [' + '-' * 10 + '>' + ' ' * 9 + '] 50.00%'
    )


def test_disabled_progress_writes_nothing():
    stream = io.StringIO()
    bar = ProgressBar(enabled=False, stream=stream)
    assert bar.update('t', 1, 2, 0, 1) is False
    bar.finish('t', 2, 'skipped', 1, 1)
    assert stream.getvalue() == ''


def test_finish_starts_new_line():
    stream = io.StringIO()
    ProgressBar(stream=stream).finish('t', 25000, 'consistent', 3, 4)
    output = stream.getvalue()
    assert output.startswith('\n')
    assert '25000 rows' in output
    assert 'consistent' in output


def test_print_summary(capsys):
    start = datetime(2024, 1, 1, 12, 0, 0)
    stats = [
        StageStat(name='TableDDL', start=start, end=start + timedelta(seconds=2), object_count=3),
        StageStat(name='Data', start=start, end=start + timedelta(seconds=10), object_count=3),
    ]
    print_summary(stats)
    out = capsys.readouterr().out

    assert 'TableDDL' in out
    assert f"{'Data':20} {3:>10} {10.0:>12.2f}" in out
    assert f"{'Total':20} {6:>10} {12.0:>12.2f}" in out


def test_print_inconsistencies(capsys):
    print_inconsistencies([])
    assert capsys.readouterr().out == ''

    print_inconsistencies([Inconsistency(table='orders', source_count=1200, target_count=1100)])
    out = capsys.readouterr().out
    assert 'orders' in out
    assert '1,200' in out
    assert '1,100' in out


def test_print_version_table(capsys):
    print_version_table('8.0.36', 'PostgreSQL 16.2 on x86_64-pc-linux-gnu, compiled by gcc')
    out = capsys.readouterr().out
    assert '8.0.36' in out
    assert 'PostgreSQL 16.2 on x86_64-pc-linux-gnu' in out
    assert 'compiled by' not in out
