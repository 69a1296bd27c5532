def test_root(client):
    body = client.get("/").json()
    assert body["status"] == "ok"
    assert body["version"] == "0.1.0"


def test_list_and_search_cooperativas(client, seed):
    pagina = client.get("/api/cooperativas", params={"size": 1}).json()
    assert pagina["totalElements"] == 2
    assert pagina["totalPages"] == 2
    assert pagina["content"][0]["nombre"] == "Cooperativa Andina"

    segunda = client.get("/api/cooperativas", params={"size": 1, "page": 1}).json()
    assert segunda["number"] == 1
    assert segunda["content"][0]["nombre"] == "Transportes Oriente"

    por_ruc = client.get("/api/cooperativas", params={"search": "18900"}).json()
    assert [c["id"] for c in por_ruc["content"]] == [seed.otra.id]
    assert client.get("/api/cooperativas", params={"size": 0}).status_code == 422


def test_create_update_delete_cooperativa(client, seed):
    creada = client.post("/api/cooperativas", json={"nombre": " Flota Imbabura ", "ruc": "1090012345001"})
    assert creada.status_code == 201
    body = creada.json()
    assert body["nombre"] == "Flota Imbabura"
    assert body["activo"] is True

    assert client.post("/api/cooperativas", json={"nombre": "Copia", "ruc": "1090012345001"}).status_code == 400
    assert client.post("/api/cooperativas", json={"nombre": "Sin RUC"}).status_code == 400

    actualizada = client.put(f"/api/cooperativas/{body['id']}", json={"logoUrl": "https://img.ec/imbabura.png"})
    assert actualizada.json()["logoUrl"] == "https://img.ec/imbabura.png"
    assert client.put(f"/api/cooperativas/{body['id']}", json={"ruc": "1790012345001"}).status_code == 400

    borrada = client.delete(f"/api/cooperativas/{body['id']}")
    assert borrada.json()["activo"] is False
    # soft delete keeps the row
    assert client.get(f"/api/cooperativas/{body['id']}").status_code == 200
    assert client.get("/api/cooperativas/9999").status_code == 404


def test_terminales(client, seed):
    nuevo = {"nombre": "Terminal Riobamba", "ciudad": "Riobamba", "provincia": "Chimborazo",
             "latitud": -1.6710, "longitud": -78.6471}
    creado = client.post("/api/terminales", json=nuevo)
    assert creado.status_code == 201
    assert creado.json()["activo"] is True

    assert client.post("/api/terminales", json={**nuevo, "latitud": -91}).status_code == 400
    assert client.post("/api/terminales", json={**nuevo, "ciudad": " "}).status_code == 400

    tungurahua = client.get("/api/terminales", params={"search": "tungurahua"}).json()
    assert {t["ciudad"] for t in tungurahua} == {"Ambato", "Baños"}

    habilitados = client.get(f"/api/cooperativas/{seed.coop.id}/terminales").json()
    assert len(habilitados) == 4
    assert client.get(f"/api/cooperativas/{seed.otra.id}/terminales").json() == []


def test_personal(client, seed):
    creado = client.post(
        f"/api/cooperativas/{seed.coop.id}/personal",
        json={"nombres": "Pedro", "apellidos": "Zambrano", "email": "Pedro@Andina.ec", "rolCooperativa": "chofer"},
    )
    assert creado.status_code == 201
    body = creado.json()
    assert body["email"] == "pedro@andina.ec"
    assert body["rolCooperativa"] == "CHOFER"
    assert body["nombreCompleto"] == "Pedro Zambrano"

    duplicado = {"nombres": "Otro", "apellidos": "Pedro", "email": "pedro@andina.ec", "rolCooperativa": "CHOFER"}
    assert client.post(f"/api/cooperativas/{seed.coop.id}/personal", json=duplicado).status_code == 400
    invalido = {**duplicado, "email": "x@andina.ec", "rolCooperativa": "GERENTE"}
    assert client.post(f"/api/cooperativas/{seed.coop.id}/personal", json=invalido).status_code == 400

    choferes = client.get(f"/api/cooperativas/{seed.coop.id}/personal", params={"rol": "chofer"}).json()
    assert len(choferes) == 5
    oficina = client.get(f"/api/cooperativas/{seed.coop.id}/personal", params={"rol": "OFICINISTA"}).json()
    assert [p["nombres"] for p in oficina] == ["Ana"]
    assert client.get("/api/cooperativas/9999/personal").status_code == 404
