from __future__ import annotations

from pathlib import Path

import pytest

from mx_resolver.cache import ArtifactCache
from mx_resolver.exceptions import PomModelError, PomNotFoundError, PomParseError, PropertyResolutionError
from mx_resolver.models import Dependency, DependencyKind
from mx_resolver.parser import PomReader, read_pom_file
from mx_resolver.scope import Scope


def _write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def _cache_pom(cache: ArtifactCache, coordinates: str, content: str) -> None:
    cache.write_artifact(Dependency.parse(coordinates).pom_dependency(), "pom", content.encode("utf-8"))


def test_parse_pom_without_namespace(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project>
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.acme</groupId>
  <artifactId>demo</artifactId>
  <version>1.0.0</version>

  <dependencies>
    <dependency>
      <groupId>org.slf4j</groupId>
      <artifactId>slf4j-api</artifactId>
      <version>2.0.12</version>
      <scope>compile</scope>
    </dependency>
  </dependencies>
</project>
"""
    path = _write(tmp_path, "pom.xml", pom)
    model = read_pom_file(path)

    assert model.coordinates == "com.acme:demo:1.0.0"
    assert model.path == path
    deps = model.dependencies[Scope.COMPILE]
    assert [d.coordinates for d in deps] == ["org.slf4j:slf4j-api:2.0.12"]


def test_parse_pom_with_namespace(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project xmlns=\"http://maven.apache.org/POM/4.0.0\">
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.acme</groupId>
  <artifactId>demo</artifactId>
  <version>1.0.0</version>
  <packaging>pom</packaging>

  <dependencies>
    <dependency>
      <groupId>junit</groupId>
      <artifactId>junit</artifactId>
      <version>4.13.2</version>
      <scope>test</scope>
      <optional>true</optional>
      <exclusions>
        <exclusion>
          <groupId>org.hamcrest</groupId>
          <artifactId>hamcrest-core</artifactId>
        </exclusion>
        <exclusion>
          <groupId>org.other</groupId>
          <artifactId>*</artifactId>
        </exclusion>
      </exclusions>
    </dependency>
  </dependencies>
</project>
"""
    path = _write(tmp_path, "pom.xml", pom)
    model = read_pom_file(path)

    assert model.is_pom()
    dep = model.dependencies[Scope.TEST][0]
    assert dep.coordinates == "junit:junit:4.13.2"
    assert dep.scope is Scope.TEST
    assert dep.optional is True
    assert dep.exclusions == {"org.hamcrest:hamcrest-core", "org.other"}


def test_resolve_properties_for_dependency_version(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project>
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.acme</groupId>
  <artifactId>demo</artifactId>
  <version>1.0.0</version>

  <properties>
    <lib.version>2.3.4</lib.version>
  </properties>

  <dependencies>
    <dependency>
      <groupId>${project.groupId}</groupId>
      <artifactId>lib</artifactId>
      <version>${lib.version}</version>
    </dependency>
  </dependencies>
</project>
"""
    path = _write(tmp_path, "pom.xml", pom)
    model = read_pom_file(path)
    assert model.dependencies[Scope.COMPILE][0].coordinates == "com.acme:lib:2.3.4"


def test_unresolved_placeholder_becomes_property_name(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project>
  <groupId>com.acme</groupId>
  <artifactId>demo</artifactId>
  <version>1</version>
  <dependencies>
    <dependency>
      <groupId>org.example</groupId>
      <artifactId>lib</artifactId>
      <version>${lib.version}</version>
    </dependency>
  </dependencies>
</project>
"""
    path = _write(tmp_path, "pom.xml", pom)
    model = read_pom_file(path)
    assert model.dependencies[Scope.COMPILE][0].version == "lib.version"


def test_strict_reader_raises_on_unresolved_property(tmp_path: Path) -> None:
    pom = """<project><groupId>g</groupId><artifactId>a</artifactId><version>${nope}</version></project>"""
    path = _write(tmp_path, "pom.xml", pom)
    with pytest.raises(PropertyResolutionError):
        PomReader(strict_properties=True).read_pom_file(path)


def test_inherit_from_cached_parent(tmp_path: Path) -> None:
    cache = ArtifactCache(tmp_path / "cache")
    _cache_pom(
        cache,
        "com.acme:parent:9.9.9",
        """<project xmlns="http://maven.apache.org/POM/4.0.0">
  <groupId>com.acme</groupId>
  <artifactId>parent</artifactId>
  <version>9.9.9</version>
  <packaging>pom</packaging>
  <url>https://acme.example.com</url>
  <properties><slf4j.version>2.0.12</slf4j.version></properties>
  <dependencyManagement>
    <dependencies>
      <dependency>
        <groupId>junit</groupId>
        <artifactId>junit</artifactId>
        <version>4.13.2</version>
        <scope>test</scope>
      </dependency>
    </dependencies>
  </dependencyManagement>
  <licenses><license><name>Apache-2.0</name></license></licenses>
</project>
""",
    )
    child = _write(
        tmp_path,
        "pom.xml",
        """<project xmlns="http://maven.apache.org/POM/4.0.0">
  <parent>
    <groupId>com.acme</groupId>
    <artifactId>parent</artifactId>
    <version>9.9.9</version>
  </parent>
  <artifactId>child</artifactId>
  <dependencies>
    <dependency>
      <groupId>org.slf4j</groupId>
      <artifactId>slf4j-api</artifactId>
      <version>${slf4j.version}</version>
    </dependency>
    <dependency>
      <groupId>junit</groupId>
      <artifactId>junit</artifactId>
    </dependency>
  </dependencies>
</project>
""",
    )

    model = PomReader(cache).read_pom_file(child)

    assert model.coordinates == "com.acme:child:9.9.9"
    assert model.get_parent_dependency().coordinates == "com.acme:parent:9.9.9"
    assert model.url == "https://acme.example.com"
    assert [lic.name for lic in model.licenses] == ["Apache-2.0"]
    assert model.dependencies[Scope.COMPILE][0].coordinates == "org.slf4j:slf4j-api:2.0.12"
    junit = model.dependencies[Scope.TEST][0]
    assert junit.version == "4.13.2"


def test_missing_parent_leaves_version_inherited_from_declaration(tmp_path: Path) -> None:
    pom = """<project xmlns="http://maven.apache.org/POM/4.0.0">
  <parent>
    <groupId>com.acme</groupId>
    <artifactId>parent</artifactId>
    <version>9.9.9</version>
  </parent>
  <artifactId>child</artifactId>
</project>
"""
    path = _write(tmp_path, "pom.xml", pom)
    model = read_pom_file(path)
    assert model.coordinates == "com.acme:child:9.9.9"


def test_import_scope_merges_cached_bom(tmp_path: Path) -> None:
    cache = ArtifactCache(tmp_path / "cache")
    _cache_pom(
        cache,
        "org.bom:bom:1.0",
        """<project>
  <groupId>org.bom</groupId><artifactId>bom</artifactId><version>1.0</version><packaging>pom</packaging>
  <dependencyManagement><dependencies>
    <dependency><groupId>org.lib</groupId><artifactId>lib</artifactId><version>3.1</version></dependency>
  </dependencies></dependencyManagement>
</project>
""",
    )
    path = _write(
        tmp_path,
        "pom.xml",
        """<project>
  <groupId>com.acme</groupId><artifactId>app</artifactId><version>1</version>
  <dependencyManagement><dependencies>
    <dependency>
      <groupId>org.bom</groupId><artifactId>bom</artifactId><version>1.0</version>
      <type>pom</type><scope>import</scope>
    </dependency>
  </dependencies></dependencyManagement>
  <dependencies>
    <dependency><groupId>org.lib</groupId><artifactId>lib</artifactId></dependency>
  </dependencies>
</project>
""",
    )

    model = PomReader(cache).read_pom_file(path)

    assert [d.coordinates for d in model.imports] == ["org.bom:bom:1.0"]
    assert model.dependencies[Scope.COMPILE][0].coordinates == "org.lib:lib:3.1"


def test_circular_parents_terminate(tmp_path: Path) -> None:
    cache = ArtifactCache(tmp_path / "cache")
    for name, parent in (("a", "b"), ("b", "a")):
        _cache_pom(
            cache,
            f"com.acme:{name}:1",
            f"""<project>
  <parent><groupId>com.acme</groupId><artifactId>{parent}</artifactId><version>1</version></parent>
  <groupId>com.acme</groupId><artifactId>{name}</artifactId><version>1</version>
</project>
""",
        )
    model = PomReader(cache).read_pom(Dependency.parse("com.acme:a:1"))
    assert model.coordinates == "com.acme:a:1"


def test_system_dependency(tmp_path: Path) -> None:
    pom = """<project>
  <groupId>com.acme</groupId><artifactId>demo</artifactId><version>1</version>
  <properties><jdk.home>/opt/jdk</jdk.home></properties>
  <dependencies>
    <dependency>
      <groupId>com.sun</groupId><artifactId>tools</artifactId><version>1.8</version>
      <scope>system</scope><systemPath>${jdk.home}/lib/tools.jar</systemPath>
    </dependency>
  </dependencies>
</project>
"""
    model = read_pom_file(_write(tmp_path, "pom.xml", pom))
    dep = model.dependencies[Scope.SYSTEM][0]
    assert dep.kind is DependencyKind.SYSTEM
    assert dep.path == "/opt/jdk/lib/tools.jar"
    assert dep.artifact_id == "tools"


def test_descriptive_elements(tmp_path: Path) -> None:
    pom = """<project>
  <groupId>com.acme</groupId><artifactId>demo</artifactId><version>1</version>
  <name>Demo ${project.version}</name>
  <description>A demo</description>
  <organization><name>Acme</name></organization>
  <issueManagement><url>https://issues.example.com</url></issueManagement>
  <developers><developer><id>jd</id><name>J. Doe</name><email>jd@example.com</email></developer></developers>
</project>
"""
    model = read_pom_file(_write(tmp_path, "pom.xml", pom))
    assert model.name == "Demo 1"
    assert model.description == "A demo"
    assert model.organization == "Acme"
    assert model.issues_url == "https://issues.example.com"
    assert model.developers[0].email == "jd@example.com"


def test_missing_artifact_id_raises(tmp_path: Path) -> None:
    path = _write(tmp_path, "pom.xml", "<project><groupId>g</groupId></project>")
    with pytest.raises(PomModelError):
        read_pom_file(path)


def test_malformed_xml_raises(tmp_path: Path) -> None:
    path = _write(tmp_path, "pom.xml", "<project><artifactId>")
    with pytest.raises(PomParseError):
        read_pom_file(path)


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(PomNotFoundError):
        read_pom_file(tmp_path / "missing.xml")
    with pytest.raises(PomNotFoundError):
        PomReader(ArtifactCache(tmp_path / "cache")).read_pom(Dependency.parse("g:a:1"))
