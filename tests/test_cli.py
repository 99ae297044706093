import logging

import blunav.cli as cli


def test_run_is_default_command(monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "run_mqtt", lambda args: calls.append(args.config))
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)

    cli.main(["--config", "custom.yaml"])
    cli.main(["run"])
    assert calls == ["custom.yaml", None]


def test_run_rejects_invalid_config(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    config_path = tmp_path / "config.yaml"
    config_path.write_text("positioning:\n  fusion_mode: magic\n", encoding="utf-8")

    with caplog.at_level(logging.ERROR, logger="blunav.cli"):
        assert cli.main(["--config", str(config_path), "run"]) == 2
    assert "magic" in caplog.text


def test_list_beacons(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    config_path = tmp_path / "config.yaml"
    csv_path = tmp_path / "beacons.csv"
    csv_path.write_text(
        "beacon_id,name,x,y,z,p0,n,height_offset\n"
        "B2,,10,0,2.5,,,1.5\n"
        "B1,door,0,0,2.5,-58,2.1,\n",
        encoding="utf-8",
    )

    assert cli.main(["--config", str(config_path), "beacons", "--file", str(csv_path)]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert [line.split("\t")[0] for line in lines] == ["B1", "B2"]
    assert "door" in lines[0] and "p0=-58.0" in lines[0]
    # 缺省 p0/n 取配置默认值
    assert "p0=-59.0" in lines[1] and "n=2.00" in lines[1] and "h=1.50" in lines[1]
