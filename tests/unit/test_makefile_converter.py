from stackrun.PARSERS.topology_parser import TopologyParser
from stackrun.CONVERTERS.to_makefile import MakefileConverter, make_variable

TOPOLOGY = """
services:
  db: {image: mysql}
operations:
  up:
    description: Start all containers
    steps:
      - {action: compose, command: [up, -d]}
  restore-db:
    description: Restore database
    params: [backup-file]
    steps:
      - {service: db, command: [mysql], stdin: restore.sql}
  backup-db:
    params: {file: dump.sql}
    steps:
      - {service: db, command: [mysqldump], stdout: "{{ file }}"}
  help:
    steps:
      - {action: host, command: [echo, help]}
"""


def _topology():
    return TopologyParser(context={}).parse_from_string(TOPOLOGY)


def test_make_variable():
    assert make_variable('file') == 'FILE'
    assert make_variable('backup-file') == 'BACKUP_FILE'


def test_render():
    content = MakefileConverter(_topology(), topology_file='deploy/stack.yml').render()

    assert '.PHONY: help up restore-db backup-db' in content
    assert 'up: ## Start all containers\n\t$(STACKRUN) -f deploy/stack.yml run up\n' in content
    assert ("restore-db: ## Restore database\n"
            "\t$(STACKRUN) -f deploy/stack.yml run restore-db $(if $(BACKUP_FILE),--param 'backup-file=$(BACKUP_FILE)')\n") in content
    assert 'backup-db: ## backup-db\n' in content
    assert '?= dump.sql' not in content
    assert 'help: ## Show this help message' in content
    assert content.count('\nhelp:') == 1


def test_convert_writes_file(tmp_path):
    out = tmp_path / "build" / "Makefile"
    MakefileConverter(_topology()).convert(str(out))
    assert out.read_text().startswith('# Generated by stackrun from stack.yml')


def test_shared_param_names_keep_their_own_defaults():
    topology = TopologyParser(context={}).parse_from_string("""
operations:
  backup-db:
    params: {file: dump.sql}
    steps:
      - {action: host, command: [dump], stdout: "{{ file }}"}
  export-csv:
    params: {file: out.csv}
    steps:
      - {action: host, command: [export], stdout: "{{ file }}"}
""")
    content = MakefileConverter(topology).render()

    assert 'FILE ?=' not in content
    assert "run backup-db $(if $(FILE),--param 'file=$(FILE)')\n" in content
    assert "run export-csv $(if $(FILE),--param 'file=$(FILE)')\n" in content


def test_params_are_passed_by_name():
    topology = TopologyParser(context={}).parse_from_string("""
operations:
  tag:
    params: {stamp: "{{ now.year }}", label: null}
    steps:
      - {action: host, command: [git, tag, "{{ label }}-{{ stamp }}"]}
""")
    content = MakefileConverter(topology).render()

    assert ("run tag $(if $(STAMP),--param 'stamp=$(STAMP)') "
            "$(if $(LABEL),--param 'label=$(LABEL)')\n") in content
